"""
Module composition plan for the orchestration template.

The orchestration template instantiates provider resource modules in a fixed,
hand-written order: networking, then security, compute, data and monitoring.
Each module call lists its explicit dependencies and the upstream outputs it
consumes. This module describes that sequence so it can be checked, displayed,
narrowed per environment and compared against the template source.

Nothing here schedules anything. The control plane builds its own dependency
graph from the template; the plan only has to be internally consistent.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from bicep_ops.exceptions import PlanError

INPUT_REFERENCE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)$")


class Stage(str, Enum):
    """Deployment stages in the order modules must appear."""

    NETWORKING = "networking"
    SECURITY = "security"
    COMPUTE = "compute"
    DATA = "data"
    MONITORING = "monitoring"

    @property
    def order(self) -> int:
        return list(Stage).index(self)


@dataclass
class ModuleCall:
    """One module invocation in the orchestration template."""

    name: str
    stage: Stage
    template: str
    depends_on: list[str] = field(default_factory=list)
    condition: str | None = None
    inputs: dict[str, str] = field(default_factory=dict)

    def input_sources(self) -> set[str]:
        """Names of the modules whose outputs this call reads."""
        sources = set()
        for reference in self.inputs.values():
            match = INPUT_REFERENCE.match(reference)
            if match:
                sources.add(match.group(1))
        return sources

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "stage": self.stage.value,
            "template": self.template,
        }
        if self.depends_on:
            data["depends_on"] = list(self.depends_on)
        if self.condition:
            data["condition"] = self.condition
        if self.inputs:
            data["inputs"] = dict(self.inputs)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModuleCall":
        return cls(
            name=data["name"],
            stage=Stage(data["stage"]),
            template=data["template"],
            depends_on=list(data.get("depends_on", [])),
            condition=data.get("condition"),
            inputs=dict(data.get("inputs", {})),
        )


def _call(name, stage, template, depends_on=None, condition=None, inputs=None) -> ModuleCall:
    return ModuleCall(
        name=name,
        stage=stage,
        template=f"modules/{template}.bicep",
        depends_on=depends_on or [],
        condition=condition,
        inputs=inputs or {},
    )


DEFAULT_MODULES = [
    # Networking
    _call("networkSecurityGroups", Stage.NETWORKING, "network-security-groups"),
    _call(
        "ddosProtection",
        Stage.NETWORKING,
        "ddos-protection",
        condition="enable_ddos_protection",
    ),
    _call(
        "virtualNetwork",
        Stage.NETWORKING,
        "virtual-network",
        depends_on=["networkSecurityGroups", "ddosProtection"],
        inputs={
            "webNsgId": "networkSecurityGroups.webNsgId",
            "appNsgId": "networkSecurityGroups.appNsgId",
            "dataNsgId": "networkSecurityGroups.dataNsgId",
        },
    ),
    _call(
        "privateDnsZones",
        Stage.NETWORKING,
        "private-dns-zones",
        depends_on=["virtualNetwork"],
        condition="enable_private_endpoints",
        inputs={"vnetId": "virtualNetwork.vnetId"},
    ),
    # Security
    _call("managedIdentity", Stage.SECURITY, "managed-identity"),
    _call(
        "keyVault",
        Stage.SECURITY,
        "key-vault",
        depends_on=["virtualNetwork", "managedIdentity"],
        inputs={
            "subnetId": "virtualNetwork.appSubnetId",
            "principalId": "managedIdentity.principalId",
        },
    ),
    # Compute
    _call(
        "loadBalancer",
        Stage.COMPUTE,
        "load-balancer",
        depends_on=["virtualNetwork"],
        inputs={"subnetId": "virtualNetwork.webSubnetId"},
    ),
    _call("appServicePlan", Stage.COMPUTE, "app-service-plan"),
    _call(
        "appService",
        Stage.COMPUTE,
        "app-service",
        depends_on=["appServicePlan", "managedIdentity", "keyVault", "virtualNetwork"],
        inputs={
            "serverFarmId": "appServicePlan.id",
            "identityId": "managedIdentity.id",
            "keyVaultUri": "keyVault.vaultUri",
            "subnetId": "virtualNetwork.appSubnetId",
        },
    ),
    _call(
        "applicationGateway",
        Stage.COMPUTE,
        "application-gateway",
        depends_on=["virtualNetwork", "appService"],
        inputs={
            "subnetId": "virtualNetwork.gatewaySubnetId",
            "backendFqdn": "appService.defaultHostName",
        },
    ),
    # Data
    _call(
        "sqlServer",
        Stage.DATA,
        "sql-server",
        depends_on=["keyVault", "managedIdentity"],
        inputs={"adminPrincipalId": "managedIdentity.principalId"},
    ),
    _call(
        "sqlDatabase",
        Stage.DATA,
        "sql-database",
        depends_on=["sqlServer"],
        inputs={"serverName": "sqlServer.name"},
    ),
    _call(
        "storageAccount",
        Stage.DATA,
        "storage-account",
        depends_on=["virtualNetwork"],
        inputs={"subnetId": "virtualNetwork.dataSubnetId"},
    ),
    _call(
        "redisCache",
        Stage.DATA,
        "redis-cache",
        depends_on=["virtualNetwork"],
        inputs={"subnetId": "virtualNetwork.dataSubnetId"},
    ),
    _call(
        "privateEndpoints",
        Stage.DATA,
        "private-endpoints",
        depends_on=["privateDnsZones", "keyVault", "sqlServer", "storageAccount", "redisCache"],
        condition="enable_private_endpoints",
        inputs={
            "subnetId": "virtualNetwork.dataSubnetId",
            "dnsZoneIds": "privateDnsZones.zoneIds",
            "keyVaultId": "keyVault.id",
            "sqlServerId": "sqlServer.id",
            "storageAccountId": "storageAccount.id",
            "redisCacheId": "redisCache.id",
        },
    ),
    # Monitoring
    _call("logAnalytics", Stage.MONITORING, "log-analytics"),
    _call(
        "applicationInsights",
        Stage.MONITORING,
        "application-insights",
        depends_on=["logAnalytics"],
        inputs={"workspaceId": "logAnalytics.id"},
    ),
    _call("actionGroup", Stage.MONITORING, "action-group"),
    _call(
        "metricAlerts",
        Stage.MONITORING,
        "metric-alerts",
        depends_on=["actionGroup", "appService", "sqlDatabase"],
        inputs={
            "actionGroupId": "actionGroup.id",
            "appServiceId": "appService.id",
            "sqlDatabaseId": "sqlDatabase.id",
        },
    ),
    _call(
        "diagnosticSettings",
        Stage.MONITORING,
        "diagnostic-settings",
        depends_on=["logAnalytics", "keyVault", "appService", "sqlDatabase", "storageAccount"],
        condition="enable_diagnostics",
        inputs={
            "workspaceId": "logAnalytics.id",
            "keyVaultName": "keyVault.name",
            "appServiceName": "appService.name",
            "sqlDatabaseId": "sqlDatabase.id",
            "storageAccountName": "storageAccount.name",
        },
    ),
]


class DeploymentPlan:
    """Ordered sequence of module calls."""

    def __init__(self, modules: list[ModuleCall]):
        self.modules = list(modules)

    @classmethod
    def default(cls) -> "DeploymentPlan":
        return cls([ModuleCall.from_dict(m.to_dict()) for m in DEFAULT_MODULES])

    @classmethod
    def from_config(cls, modules: list[dict[str, Any]]) -> "DeploymentPlan":
        return cls([ModuleCall.from_dict(m) for m in modules])

    def get(self, name: str) -> ModuleCall | None:
        for module in self.modules:
            if module.name == name:
                return module
        return None

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.modules]

    def conditions(self) -> set[str]:
        return {m.condition for m in self.modules if m.condition}

    def validate(self) -> list[str]:
        """
        Check the plan's internal consistency.

        Returns:
            List of error messages (empty when the plan is consistent)
        """
        errors = []
        position: dict[str, int] = {}

        for index, module in enumerate(self.modules):
            if module.name in position:
                errors.append(f"Duplicate module name '{module.name}'")
            else:
                position[module.name] = index

        previous_stage = None
        for index, module in enumerate(self.modules):
            if previous_stage is not None and module.stage.order < previous_stage.order:
                errors.append(
                    f"Module '{module.name}' ({module.stage.value}) is declared after "
                    f"a {previous_stage.value} module"
                )
            previous_stage = module.stage

            for dependency in module.depends_on:
                if dependency == module.name:
                    errors.append(f"Module '{module.name}' depends on itself")
                    continue
                if dependency not in position:
                    errors.append(f"Module '{module.name}' depends on unknown module '{dependency}'")
                    continue
                target = self.modules[position[dependency]]
                if position[dependency] > index:
                    errors.append(
                        f"Module '{module.name}' depends on '{dependency}', "
                        "which is declared after it"
                    )
                if target.stage.order > module.stage.order:
                    errors.append(
                        f"Module '{module.name}' ({module.stage.value}) depends on "
                        f"'{dependency}' from the later {target.stage.value} stage"
                    )

            for parameter, reference in module.inputs.items():
                match = INPUT_REFERENCE.match(reference)
                if not match:
                    errors.append(
                        f"Module '{module.name}' input '{parameter}' has malformed reference "
                        f"'{reference}' (expected <module>.<output>)"
                    )
                    continue
                source = match.group(1)
                if source not in position:
                    errors.append(
                        f"Module '{module.name}' input '{parameter}' reads unknown module '{source}'"
                    )
                elif position[source] >= index:
                    errors.append(
                        f"Module '{module.name}' input '{parameter}' reads '{source}', "
                        "which is not declared before it"
                    )

        return errors

    def resolve(self, features: dict[str, bool]) -> list[ModuleCall]:
        """
        Module calls deployed for a feature set, in plan order.

        Conditional modules whose flag is off are removed and dependencies on
        them are dropped, the way a deployment skips a false-condition module.

        Raises:
            PlanError: The plan is inconsistent, or an enabled module reads
                outputs of a module that is not deployed
        """
        errors = self.validate()
        if errors:
            raise PlanError(errors)

        enabled = {
            m.name for m in self.modules if m.condition is None or features.get(m.condition, False)
        }

        resolved = []
        for module in self.modules:
            if module.name not in enabled:
                continue
            missing = sorted(module.input_sources() - enabled)
            if missing:
                errors.append(
                    f"Module '{module.name}' reads outputs of {', '.join(repr(m) for m in missing)}, "
                    "which is not deployed with the current feature flags"
                )
                continue
            resolved.append(
                ModuleCall(
                    name=module.name,
                    stage=module.stage,
                    template=module.template,
                    depends_on=[d for d in module.depends_on if d in enabled],
                    condition=module.condition,
                    inputs=dict(module.inputs),
                )
            )

        if errors:
            raise PlanError(errors)
        return resolved

    def by_stage(self, modules: list[ModuleCall] | None = None) -> dict[Stage, list[ModuleCall]]:
        """Group module calls by stage, keeping plan order inside each stage."""
        grouped: dict[Stage, list[ModuleCall]] = {stage: [] for stage in Stage}
        for module in modules if modules is not None else self.modules:
            grouped[module.stage].append(module)
        return grouped
