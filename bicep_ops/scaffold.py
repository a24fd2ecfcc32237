"""
Scaffold workspace files: the orchestration template rendered from the plan,
parameter files per environment, the Checkov config and the rule file.
"""

from pathlib import Path

import yaml

from bicep_ops.bicep import to_camel_case
from bicep_ops.exceptions import PlanError
from bicep_ops.parameters import (
    build_parameters,
    sku_parameter,
    template_parameters,
    write_parameter_file,
)
from bicep_ops.plan import DeploymentPlan
from bicep_ops.util.files import write_text
from bicep_ops.util.templates import TemplateLoader

# Template parameters handed on to the modules that consume them
MODULE_PARAMETERS = {
    "keyVault": {
        "softDeleteRetentionInDays": "softDeleteRetentionDays",
        "enablePrivateEndpoint": "enablePrivateEndpoints",
    },
    "appServicePlan": {"zoneRedundant": "zoneRedundant"},
    "applicationGateway": {"zoneRedundant": "zoneRedundant"},
    "sqlServer": {"enablePrivateEndpoint": "enablePrivateEndpoints"},
    "sqlDatabase": {"zoneRedundant": "zoneRedundant"},
    "storageAccount": {
        "zoneRedundant": "zoneRedundant",
        "enablePrivateEndpoint": "enablePrivateEndpoints",
    },
    "redisCache": {
        "zoneRedundant": "zoneRedundant",
        "enablePrivateEndpoint": "enablePrivateEndpoints",
    },
    "logAnalytics": {"retentionInDays": "logRetentionDays"},
}

CHECKOV_CONFIG = {
    "compact": True,
    "quiet": True,
    "framework": ["bicep", "arm"],
    "skip-check": [],
}


def render_main_template(
    plan: DeploymentPlan, profile, loader: TemplateLoader | None = None
) -> str:
    """
    Render main.bicep for the plan.

    Args:
        plan: Module composition plan (conditional modules keep their condition)
        profile: Any environment profile; its feature flags and SKU keys
            decide which parameters the template declares
        loader: Template loader (packaged templates by default)

    Returns:
        Bicep source text
    """
    errors = plan.validate()
    if errors:
        raise PlanError(errors)

    parameters = template_parameters(profile, plan.conditions())
    declared = {p.name for p in parameters}
    sku_parameters = {to_camel_case(c): sku_parameter(c) for c in profile.skus}

    def module_params(name: str) -> list[tuple[str, str]]:
        params = [
            (key, source)
            for key, source in MODULE_PARAMETERS.get(name, {}).items()
            if source in declared
        ]
        if name in sku_parameters:
            params.append(("sku", sku_parameters[name]))
        return params

    stages = []
    for stage, modules in plan.by_stage().items():
        stages.append(
            (
                stage.value,
                [
                    {
                        "name": m.name,
                        "template": m.template,
                        "condition": to_camel_case(m.condition) if m.condition else None,
                        "depends_on": m.depends_on,
                        "params": module_params(m.name),
                        "inputs": [
                            (key, *reference.split(".", 1)) for key, reference in m.inputs.items()
                        ],
                    }
                    for m in modules
                ],
            )
        )

    loader = loader or TemplateLoader()
    return loader.render(
        "main.bicep.j2",
        {"parameters": parameters, "stages": stages},
    )


def write_parameter_files(workspace, environments: list[str] | None = None) -> list[Path]:
    """Write <env>.parameters.json for each environment; returns the written paths."""
    written = []
    for environment in environments or workspace.environments():
        profile = workspace.profile(environment)
        document = build_parameters(profile, workspace.naming(environment))
        path = workspace.parameter_file(environment)
        write_parameter_file(path, document)
        written.append(path)
    return written


def write_checkov_config(path: Path) -> None:
    write_text(path, yaml.safe_dump(CHECKOV_CONFIG, default_flow_style=False, sort_keys=False))


def write_rules_file(path: Path) -> None:
    """Write a starter rule file that documents the override format."""
    content = (
        "# Template assertions run by `bicep-ops test`.\n"
        "# Rules with the id of a built-in rule replace it; enabled: false disables it.\n"
        "rules:\n"
        "  - id: TAG-001\n"
        "    description: Orchestration template passes tags to modules\n"
        "    pattern: \"tags:\\\\s*tags\"\n"
        "    files: main.bicep\n"
        "    expect: present\n"
        "    severity: warning\n"
    )
    write_text(path, content)
