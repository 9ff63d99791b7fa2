"""
Provider Adapter Module

Responsibility:
- Define the capability the core consumes from a cloud provider: apply a
  typed resource and get back its computed attributes, or destroy it
- Provide InMemoryProvider, a deterministic adapter for dry runs and tests

Real API bindings, state storage and locking live outside this package and
plug in by subclassing ProviderAdapter.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from stackforge.contracts import ResourceKind, is_data_source, output_names
from stackforge.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Executes plan steps against a cloud API."""

    @abstractmethod
    def apply(self, kind: ResourceKind, inputs: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create (or look up, for data sources) a resource.

        Args:
            kind: Resource kind of the plan step
            inputs: Inputs with every reference already resolved

        Returns:
            Output attributes named by the kind's contract

        Raises:
            ProviderError: the call failed
        """

    @abstractmethod
    def destroy(self, kind: ResourceKind, identity: Mapping[str, Any]) -> None:
        """
        Destroy a resource previously returned by apply.

        Args:
            kind: Resource kind
            identity: The outputs recorded when the resource was applied

        Raises:
            ProviderError: the call failed
        """


class InMemoryProvider(ProviderAdapter):
    """
    Deterministic provider that keeps resources in a dict.

    Identifiers come from a counter, so applying the same plan with one
    worker always yields the same outputs.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = "123456789012",
        repositories: Optional[Iterable[str]] = None,
        fail_kinds: Optional[Iterable[ResourceKind]] = None,
    ):
        self.region = region
        self.account_id = account_id
        # None means any repository name resolves
        self.repositories = set(repositories) if repositories is not None else None
        self.fail_kinds = set(fail_kinds or ())
        self.resources: Dict[str, Tuple[ResourceKind, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, ResourceKind, str]] = []
        self._counter = itertools.count(1)
        self._revisions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def apply(self, kind: ResourceKind, inputs: Mapping[str, Any]) -> Dict[str, Any]:
        kind = ResourceKind(kind)
        if kind in self.fail_kinds:
            raise ProviderError(f"Simulated failure creating {kind.value}", kind=kind.value)

        with self._lock:
            serial = next(self._counter)
            outputs = self._outputs(kind, dict(inputs), serial)
            if not is_data_source(kind):
                self.resources[self._identity_key(outputs)] = (kind, dict(inputs))
            self.calls.append(("apply", kind, self._identity_key(outputs)))

        logger.debug("In-memory apply %s -> %s", kind.value, outputs)
        return outputs

    def destroy(self, kind: ResourceKind, identity: Mapping[str, Any]) -> None:
        kind = ResourceKind(kind)
        if kind in self.fail_kinds:
            raise ProviderError(f"Simulated failure destroying {kind.value}", kind=kind.value)

        key = self._identity_key(identity)
        with self._lock:
            if key not in self.resources:
                raise ProviderError(f"{kind.value} '{key}' does not exist", kind=kind.value)
            del self.resources[key]
            self.calls.append(("destroy", kind, key))

    def _identity_key(self, identity: Mapping[str, Any]) -> str:
        return str(identity.get("arn") or identity.get("id"))

    def _outputs(self, kind: ResourceKind, inputs: Dict[str, Any], serial: int) -> Dict[str, Any]:
        short = kind.value.split(".")[-1].replace("aws_", "", 1).replace("_", "-")
        ident = f"{short}-{serial:08x}"
        name = inputs.get("name") or inputs.get("alarm_name") or inputs.get("family") or ident

        if kind == ResourceKind.ECR_REPOSITORY and self.repositories is not None and name not in self.repositories:
            raise ProviderError(f"ECR repository '{name}' not found", kind=kind.value)

        values = {
            "id": ident,
            "arn": f"arn:aws:{short}:{self.region}:{self.account_id}:{short}/{name}",
            "name": name,
            "arn_suffix": f"{short}/{name}/{serial:08x}",
            "cidr_block": inputs.get("cidr_block"),
            "availability_zone": inputs.get("availability_zone"),
            "default_security_group_id": f"sg-default-{serial:08x}",
            "dns_name": f"{name}-{serial}.{self.region}.elb.amazonaws.com",
            "zone_id": "Z35SXDOTRQ7X7K",
            "registry_id": self.account_id,
            "repository_url": f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com/{name}",
            "cluster": inputs.get("cluster"),
            "family": inputs.get("family"),
        }

        if kind == ResourceKind.ECS_TASK_DEFINITION:
            family = inputs["family"]
            self._revisions[family] = self._revisions.get(family, 0) + 1
            values["revision"] = self._revisions[family]
            values["arn"] = f"{values['arn']}:{values['revision']}"

        return {output: values[output] for output in output_names(kind)}
