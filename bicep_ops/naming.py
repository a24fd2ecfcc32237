"""
Resource naming convention.

Every resource name is built from the same prefix/workload/environment triple
plus a per-type abbreviation, e.g. ``kv-contoso-webapp-prd`` for a Key Vault.
Types whose names only allow lowercase alphanumerics (storage accounts,
container registries) use a compact form with a stable hash suffix, because
those names are globally unique:

    stcontosowebappprd1a2b3c

Key Vault names keep their hyphens but are cut back and given the same kind of
suffix when the triple would exceed 24 characters.
"""

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime

from bicep_ops.exceptions import NamingError
from bicep_ops.models.environment import Environment

PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9]{1,9}$")
WORKLOAD_PATTERN = re.compile(r"^[a-z][a-z0-9]{1,19}$")
INSTANCE_PATTERN = re.compile(r"^[a-z0-9]{1,5}$")

ENVIRONMENT_CODES = {
    Environment.DEV: "dev",
    Environment.STAGING: "stg",
    Environment.PROD: "prd",
}

DEPLOYMENT_NAME_MAX_LENGTH = 64


@dataclass(frozen=True)
class ResourceType:
    """Naming rules for one resource type."""

    abbreviation: str
    max_length: int
    compact: bool = False
    # hyphenated, but cut back and given a hash suffix when over max_length
    shorten: bool = False


RESOURCE_TYPES: dict[str, ResourceType] = {
    "resource_group": ResourceType("rg", 90),
    "virtual_network": ResourceType("vnet", 64),
    "subnet": ResourceType("snet", 80),
    "network_security_group": ResourceType("nsg", 80),
    "ddos_protection_plan": ResourceType("ddos", 80),
    "public_ip": ResourceType("pip", 80),
    "load_balancer": ResourceType("lbe", 80),
    "application_gateway": ResourceType("agw", 80),
    "private_endpoint": ResourceType("pe", 64),
    "managed_identity": ResourceType("id", 128),
    "key_vault": ResourceType("kv", 24, shorten=True),
    "app_service_plan": ResourceType("asp", 40),
    "app_service": ResourceType("app", 60),
    "sql_server": ResourceType("sql", 63),
    "sql_database": ResourceType("sqldb", 128),
    "storage_account": ResourceType("st", 24, compact=True),
    "container_registry": ResourceType("cr", 50, compact=True),
    "redis_cache": ResourceType("redis", 63),
    "log_analytics_workspace": ResourceType("log", 63),
    "application_insights": ResourceType("appi", 260),
    "action_group": ResourceType("ag", 260),
}


def unique_suffix(*seeds: str, length: int = 6) -> str:
    """
    Stable lowercase hex suffix derived from the seeds.

    The same seeds always produce the same suffix, so repeated deployments
    of one environment target the same globally unique names.
    """
    if length < 1 or length > 64:
        raise ValueError(f"Suffix length must be between 1 and 64, got {length}")
    return hashlib.sha256("|".join(seeds).encode()).hexdigest()[:length]


def standard_tags(
    environment: str,
    workload: str,
    owner: str | None = None,
    cost_center: str | None = None,
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    """Tags applied to every resource group and resource."""
    tags = {
        "environment": environment,
        "workload": workload,
        "managedBy": "bicep-ops",
    }
    if owner:
        tags["owner"] = owner
    if cost_center:
        tags["costCenter"] = cost_center
    if extra:
        tags.update(extra)
    return tags


class NamingConvention:
    """Builds resource names for one prefix/workload/environment triple."""

    def __init__(self, prefix: str, workload: str, environment: str | Environment):
        if not PREFIX_PATTERN.match(prefix or ""):
            raise NamingError(
                f"Invalid prefix '{prefix}': expected 2-10 lowercase letters or digits "
                "starting with a letter"
            )
        if not WORKLOAD_PATTERN.match(workload or ""):
            raise NamingError(
                f"Invalid workload '{workload}': expected 2-20 lowercase letters or digits "
                "starting with a letter"
            )
        try:
            env = Environment(environment)
        except ValueError:
            allowed = ", ".join(e.value for e in Environment)
            raise NamingError(
                f"Invalid environment '{environment}'", f"Environment must be one of: {allowed}"
            ) from None

        self.prefix = prefix
        self.workload = workload
        self.environment = env

    @property
    def environment_code(self) -> str:
        return ENVIRONMENT_CODES[self.environment]

    def name(self, resource_type: str, instance: str | None = None) -> str:
        """
        Name for a resource type.

        Args:
            resource_type: Key of RESOURCE_TYPES (e.g. "key_vault")
            instance: Optional short instance qualifier (e.g. "001")

        Raises:
            NamingError: Unknown type, bad instance, or name over the type's limit
        """
        rtype = RESOURCE_TYPES.get(resource_type)
        if rtype is None:
            raise NamingError(
                f"Unknown resource type '{resource_type}'",
                f"Known types: {', '.join(sorted(RESOURCE_TYPES))}",
            )
        if instance is not None and not INSTANCE_PATTERN.match(instance):
            raise NamingError(
                f"Invalid instance '{instance}': expected 1-5 lowercase letters or digits"
            )

        if rtype.compact:
            return self._compact_name(rtype, instance)

        parts = [rtype.abbreviation, self.prefix, self.workload, self.environment_code]
        if instance:
            parts.append(instance)
        name = "-".join(parts)

        if len(name) > rtype.max_length and rtype.shorten:
            return self._shortened_name(name, rtype, instance)
        if len(name) > rtype.max_length:
            raise NamingError(
                f"Name '{name}' for {resource_type} is {len(name)} characters; "
                f"the limit is {rtype.max_length}"
            )
        return name

    def _compact_name(self, rtype: ResourceType, instance: str | None) -> str:
        suffix = unique_suffix(self.prefix, self.workload, self.environment.value, instance or "")
        body = f"{rtype.abbreviation}{self.prefix}{self.workload}{self.environment_code}"
        if instance:
            body += instance
        return body[: rtype.max_length - len(suffix)] + suffix

    def _shortened_name(self, name: str, rtype: ResourceType, instance: str | None) -> str:
        suffix = unique_suffix(self.prefix, self.workload, self.environment.value, instance or "")
        body = name[: rtype.max_length - len(suffix) - 1].rstrip("-")
        return f"{body}-{suffix}"

    def all_names(self) -> dict[str, str]:
        """Name for every known resource type."""
        return {resource_type: self.name(resource_type) for resource_type in RESOURCE_TYPES}

    def deployment_name(self, timestamp: datetime | None = None) -> str:
        """Deployment name recorded by the control plane for one run."""
        stamp = (timestamp or datetime.now()).strftime("%Y%m%d%H%M%S")
        name = f"{self.prefix}-{self.workload}-{self.environment_code}-{stamp}"
        return name[:DEPLOYMENT_NAME_MAX_LENGTH]
