"""Environment profile dataclasses.

An environment profile selects the SKU tiers, redundancy, retention and
feature toggles for one deployment target (dev, staging, prod). Profiles live
under ``environments:`` in bicep-ops.yaml and are turned into deployment
parameter files by :mod:`bicep_ops.parameters`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Environment(str, Enum):
    """Deployment environments supported by the wrapper."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


FEATURE_FLAGS = (
    "enable_private_endpoints",
    "enable_ddos_protection",
    "enable_diagnostics",
)


@dataclass
class EnvironmentProfile:
    """Configuration for a single deployment environment."""

    name: str
    location: str
    resource_group: str | None = None
    skus: dict[str, str] = field(default_factory=dict)
    zone_redundant: bool = False
    log_retention_days: int = 30
    soft_delete_retention_days: int = 7
    features: dict[str, bool] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)

    def feature(self, flag: str) -> bool:
        """Return a feature flag, False when unset."""
        return bool(self.features.get(flag, False))

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any], default_location: str) -> "EnvironmentProfile":
        """Build a profile from its bicep-ops.yaml section."""
        features = {flag: False for flag in FEATURE_FLAGS}
        features.update({k: bool(v) for k, v in data.get("features", {}).items()})

        return cls(
            name=name,
            location=data.get("location", default_location),
            resource_group=data.get("resource_group"),
            skus=dict(data.get("skus", {})),
            zone_redundant=bool(data.get("zone_redundant", False)),
            log_retention_days=int(data.get("log_retention_days", 30)),
            soft_delete_retention_days=int(data.get("soft_delete_retention_days", 7)),
            features=features,
            tags=dict(data.get("tags", {})),
        )


DEFAULT_ENVIRONMENTS: dict[str, dict[str, Any]] = {
    "dev": {
        "skus": {
            "app_service_plan": "B1",
            "sql_database": "Basic",
            "key_vault": "standard",
            "storage_account": "Standard_LRS",
            "redis_cache": "Basic",
            "load_balancer": "Standard",
        },
        "zone_redundant": False,
        "log_retention_days": 30,
        "soft_delete_retention_days": 7,
        "features": {
            "enable_private_endpoints": False,
            "enable_ddos_protection": False,
            "enable_diagnostics": True,
        },
    },
    "staging": {
        "skus": {
            "app_service_plan": "S1",
            "sql_database": "S1",
            "key_vault": "standard",
            "storage_account": "Standard_GRS",
            "redis_cache": "Standard",
            "load_balancer": "Standard",
        },
        "zone_redundant": False,
        "log_retention_days": 90,
        "soft_delete_retention_days": 30,
        "features": {
            "enable_private_endpoints": True,
            "enable_ddos_protection": False,
            "enable_diagnostics": True,
        },
    },
    "prod": {
        "skus": {
            "app_service_plan": "P1v3",
            "sql_database": "P1",
            "key_vault": "premium",
            "storage_account": "Standard_ZRS",
            "redis_cache": "Premium",
            "load_balancer": "Standard",
        },
        "zone_redundant": True,
        "log_retention_days": 365,
        "soft_delete_retention_days": 90,
        "features": {
            "enable_private_endpoints": True,
            "enable_ddos_protection": True,
            "enable_diagnostics": True,
        },
    },
}
