"""
Resource Naming Module

Responsibility:
- Derive physical resource names that include the environment name
- Truncate deterministically to a platform length limit, keeping the
  required suffix and a short stable hash of the untruncated name

Truncation never depends on anything but its arguments, so the same
descriptor always yields the same names.
"""

import hashlib

from stackforge.errors import NamingError

DIGEST_LENGTH = 4

# Shortest limit with the longest suffix the topology uses ("-alb" on a load
# balancer): one prefix character, the digest and two separators must fit too
STRICTEST_NAME_LIMIT = 32
LONGEST_STRICT_SUFFIX = "-alb"
MAX_ENVIRONMENT_NAME_LENGTH = STRICTEST_NAME_LIMIT - len(LONGEST_STRICT_SUFFIX) - DIGEST_LENGTH - 2 - 1


def name_digest(name: str, length: int = DIGEST_LENGTH) -> str:
    """Short stable hash used to keep truncated names distinct."""
    return hashlib.sha1(name.encode("utf-8")).hexdigest()[:length]


def truncate_name(name: str, limit: int, suffix: str = "") -> str:
    """
    Fit a name into `limit` characters.

    Names already within the limit are returned unchanged. Longer names keep
    `suffix`, lose characters from the end of the stem, and gain a hash of
    the full name before the suffix.
    """
    if suffix and not name.endswith(suffix):
        raise NamingError(f"Name '{name}' does not end with required suffix '{suffix}'")
    if len(name) <= limit:
        return name

    stem = name[: len(name) - len(suffix)] if suffix else name
    digest = name_digest(name)
    room = limit - len(suffix) - len(digest) - 1
    if room < 1:
        raise NamingError(f"Limit {limit} is too short for suffix '{suffix}'")

    return f"{stem[:room].rstrip('-_')}-{digest}{suffix}"


def derive_name(prefix: str, environment: str, suffix: str = "", limit: int = None) -> str:
    """
    Build `<prefix>-<environment><suffix>` within an optional length limit.

    When the name is too long the prefix is shortened, then dropped, so the
    environment name always survives. NamingError is raised when the
    environment name and suffix alone exceed the limit.
    """
    name = f"{prefix}-{environment}{suffix}"
    if limit is None or len(name) <= limit:
        return name

    digest = name_digest(name)
    room = limit - len(environment) - len(suffix) - len(digest) - 2
    if room >= 1:
        short_prefix = prefix[:room].rstrip("-_") or prefix[:1]
        return f"{short_prefix}-{environment}-{digest}{suffix}"

    without_prefix = f"{environment}-{digest}{suffix}"
    if len(without_prefix) <= limit:
        return without_prefix

    raise NamingError(
        f"Environment name '{environment}' with suffix '{suffix}' does not fit in {limit} characters"
    )
