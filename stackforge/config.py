"""
Environment Configuration Module

Responsibility:
- EnvironmentDescriptor: name, region, CIDR block and literal overrides for
  one deployment environment
- TopologySettings: the sizing knobs the topology template reads, validated
  from defaults plus per-environment overrides
- Load descriptors from a YAML file

This is the only place that looks at process environment (.env file and
default region variables). Graph building receives explicit descriptors.
"""

import ipaddress
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from stackforge.errors import ConfigError
from stackforge.naming import MAX_ENVIRONMENT_NAME_LENGTH

DEFAULT_REGION = "us-east-1"
REGION_ENV_VARS = ("STACKFORGE_DEFAULT_REGION", "AWS_REGION")
APP_NAME_MAX_LENGTH = 64

_ENV_NAME_PATTERN = re.compile(rf"^[a-z][a-z0-9-]{{0,{MAX_ENVIRONMENT_NAME_LENGTH - 1}}}$")
_REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")


class TopologySettings(BaseModel):
    """Sizing and naming values consumed by the topology template."""

    app_name: str = Field(default="express-ts-app", min_length=1, max_length=APP_NAME_MAX_LENGTH)
    container_port: int = Field(default=3000, ge=1, le=65535)
    listener_port: int = Field(default=80, ge=1, le=65535)
    cpu: int = 256
    memory: int = 512
    desired_count: int = Field(default=1, ge=0)
    availability_zones: List[str] = Field(default_factory=lambda: ["a", "b"], min_length=2)
    subnet_prefix_length: int = Field(default=24, ge=16, le=28)
    health_check_path: str = "/health"
    healthy_threshold: int = Field(default=2, ge=2, le=10)
    unhealthy_threshold: int = Field(default=10, ge=2, le=10)
    ecr_repository: str = "turbovetsrepo-ecr"
    image_tag: str = "latest"
    log_retention_days: int = Field(default=30, ge=1, le=3653)
    alarm_5xx_threshold: int = Field(default=10, ge=1)
    alarm_evaluation_periods: int = Field(default=2, ge=1)
    container_insights: bool = True

    model_config = {"extra": "forbid"}

    @field_validator("cpu")
    @classmethod
    def validate_cpu(cls, v: int) -> int:
        if v not in (256, 512, 1024, 2048, 4096):
            raise ValueError(f"Fargate cpu must be one of 256, 512, 1024, 2048, 4096, got {v}")
        return v


class EnvironmentDescriptor(BaseModel):
    """An isolated deployment target and its literal parameters."""

    name: str
    region: str = DEFAULT_REGION
    cidr_block: str
    overrides: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _ENV_NAME_PATTERN.match(v):
            raise ValueError(
                "environment name must start with a lowercase letter and contain only "
                f"lowercase letters, digits and '-' (max {MAX_ENVIRONMENT_NAME_LENGTH} chars), got '{v}'"
            )
        return v

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        if not _REGION_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a region identifier like 'us-east-1'")
        return v

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        try:
            network = ipaddress.IPv4Network(v, strict=True)
        except ValueError as exc:
            raise ValueError(f"'{v}' is not a valid IPv4 CIDR block: {exc}") from exc
        return str(network)

    @model_validator(mode="after")
    def validate_overrides(self) -> "EnvironmentDescriptor":
        # Surface bad overrides at load time rather than while building
        settings = TopologySettings.model_validate(self.overrides)

        # Subnet index 0 is left unused, one subnet per availability zone after it
        needed = len(settings.availability_zones) + 1
        spare_bits = settings.subnet_prefix_length - self.network.prefixlen
        if spare_bits < 0 or 2 ** spare_bits < needed:
            raise ValueError(
                f"CIDR block '{self.cidr_block}' cannot hold {needed} "
                f"/{settings.subnet_prefix_length} subnets"
            )
        return self

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.cidr_block)

    @property
    def settings(self) -> TopologySettings:
        return TopologySettings.model_validate(self.overrides)


class EnvironmentsFile(BaseModel):
    """Top-level layout of an environments YAML file."""

    defaults: Dict[str, Any] = Field(default_factory=dict)
    environments: List[Dict[str, Any]] = Field(min_length=1)


def default_region() -> str:
    """Region used when an environment entry does not name one."""
    for var in REGION_ENV_VARS:
        value = os.getenv(var)
        if value:
            return value
    return DEFAULT_REGION


def parse_environments(data: Dict[str, Any], region: Optional[str] = None) -> List[EnvironmentDescriptor]:
    """
    Build descriptors from already-parsed config data.

    `defaults` are merged under each environment's own `overrides`.
    """
    try:
        parsed = EnvironmentsFile.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid environments config: {exc}") from exc

    region = region or default_region()
    descriptors = []
    for index, entry in enumerate(parsed.environments):
        entry = dict(entry)
        entry.setdefault("region", region)
        entry["overrides"] = {**parsed.defaults, **(entry.get("overrides") or {})}
        try:
            descriptors.append(EnvironmentDescriptor.model_validate(entry))
        except ValidationError as exc:
            label = entry.get("name", f"#{index}")
            raise ConfigError(f"Invalid environment '{label}': {exc}") from exc

    return descriptors


def load_environments(path: Union[str, Path], dotenv_path: Optional[Union[str, Path]] = None) -> List[EnvironmentDescriptor]:
    """Load environment descriptors from a YAML file."""
    load_dotenv(dotenv_path)

    path = Path(path)
    try:
        with path.open() as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"Cannot read environments file '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Environments file '{path}' is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Environments file '{path}' must contain a mapping")

    return parse_environments(data)
