"""
Deployment parameter files.

Parameter files are JSON documents in the deployment-parameters format::

    {
      "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#",
      "contentVersion": "1.0.0.0",
      "parameters": {
        "environment": {"value": "dev"},
        "sqlAdminPassword": {"reference": {"keyVault": {"id": "..."}, "secretName": "..."}}
      }
    }

One file per environment is generated from the environment profile, checked
against the bundled JSON schema, and cross-checked against the ``param``
declarations of the orchestration template.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator, ValidationError

from bicep_ops.bicep import BicepTemplate, to_camel_case
from bicep_ops.exceptions import (
    ParameterError,
    ParameterFileNotFoundError,
    ParameterValidationError,
)
from bicep_ops.models.environment import EnvironmentProfile
from bicep_ops.models.finding import Finding
from bicep_ops.naming import NamingConvention
from bicep_ops.util.files import write_json

SCHEMA_FILE = Path(__file__).parent / "schema" / "parameters.schema.json"
PARAMETERS_SCHEMA_URL = (
    "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#"
)
CONTENT_VERSION = "1.0.0.0"

BICEP_TYPES = {
    "string": str,
    "int": int,
    "bool": bool,
    "object": dict,
    "array": list,
}


@dataclass
class TemplateParameter:
    """A parameter the orchestration template declares for the profile values."""

    name: str
    type: str
    default: str | None = None
    allowed: list[Any] | None = None
    min_value: int | None = None
    max_value: int | None = None
    min_length: int | None = None
    max_length: int | None = None
    description: str | None = None


def sku_parameter(component: str) -> str:
    """Parameter name for a component SKU (app_service_plan -> appServicePlanSku)."""
    return f"{to_camel_case(component)}Sku"


def template_parameters(
    profile: EnvironmentProfile, extra_flags: set[str] | None = None
) -> list[TemplateParameter]:
    """Parameter declarations matching what build_parameters() emits for the profile."""
    params = [
        TemplateParameter(
            "environment", "string", allowed=["dev", "staging", "prod"],
            description="Deployment environment",
        ),
        TemplateParameter(
            "location", "string", default="resourceGroup().location",
            description="Region for all resources",
        ),
        TemplateParameter("prefix", "string", min_length=2, max_length=10),
        TemplateParameter("workload", "string", min_length=2, max_length=20),
        TemplateParameter("tags", "object", default="{}"),
        TemplateParameter("zoneRedundant", "bool", default="false"),
        TemplateParameter(
            "logRetentionDays", "int", min_value=30, max_value=730,
            description="Log Analytics retention in days",
        ),
        TemplateParameter(
            "softDeleteRetentionDays", "int", min_value=7, max_value=90,
            description="Key Vault soft delete retention in days",
        ),
    ]
    for flag in list(profile.features) + sorted(set(extra_flags or ()) - set(profile.features)):
        params.append(TemplateParameter(to_camel_case(flag), "bool", default="false"))
    for component in profile.skus:
        params.append(TemplateParameter(sku_parameter(component), "string"))
    return params


def build_parameters(profile: EnvironmentProfile, naming: NamingConvention) -> dict[str, Any]:
    """
    Parameter document for one environment.

    Args:
        profile: Environment profile (SKUs, redundancy, retention, feature flags)
        naming: Naming convention of the environment

    Returns:
        Deployment parameters document
    """
    values: dict[str, Any] = {
        "environment": profile.name,
        "location": profile.location,
        "prefix": naming.prefix,
        "workload": naming.workload,
        "tags": dict(profile.tags),
        "zoneRedundant": profile.zone_redundant,
        "logRetentionDays": profile.log_retention_days,
        "softDeleteRetentionDays": profile.soft_delete_retention_days,
    }
    for flag, enabled in profile.features.items():
        values[to_camel_case(flag)] = enabled
    for component, sku in profile.skus.items():
        values[sku_parameter(component)] = sku

    return {
        "$schema": PARAMETERS_SCHEMA_URL,
        "contentVersion": CONTENT_VERSION,
        "parameters": {name: {"value": value} for name, value in values.items()},
    }


def write_parameter_file(path: Path, document: dict[str, Any]) -> None:
    """
    Write a parameter document after checking it against the schema.

    Raises:
        ParameterValidationError: The document is not a valid parameter file
    """
    errors = validate_document(document)
    if errors:
        raise ParameterValidationError(errors, str(path))
    write_json(path, document)


def load_parameter_file(path: Path, environment: str | None = None) -> dict[str, Any]:
    """
    Load a parameter document.

    Raises:
        ParameterFileNotFoundError: The file does not exist
        ParameterError: The file is not a JSON object
    """
    path = Path(path)
    if not path.is_file():
        raise ParameterFileNotFoundError(str(path), environment)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ParameterError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(document, dict):
        raise ParameterError(f"Expected a JSON object in {path}, got {type(document).__name__}")
    return document


def validate_parameter_file(path: Path, environment: str | None = None) -> tuple[bool, list[str]]:
    """
    Validate a parameter file against the bundled schema.

    Returns:
        tuple: (is_valid, error_messages)

    Raises:
        ParameterFileNotFoundError: The file does not exist
    """
    try:
        document = load_parameter_file(path, environment)
    except ParameterFileNotFoundError:
        raise
    except ParameterError as e:
        return (False, [e.message])

    errors = validate_document(document)
    return (not errors, errors)


def validate_document(document: dict[str, Any]) -> list[str]:
    """Schema errors for a parameter document (empty when valid)."""
    schema = json.loads(SCHEMA_FILE.read_text())
    validator = Draft202012Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(document), key=lambda e: [str(p) for p in e.path]):
        errors.extend(format_validation_error(error))
    return errors


def format_validation_error(error: ValidationError) -> list[str]:
    """Turn a jsonschema error into readable messages."""
    path = ".".join(str(p) for p in error.path) if error.path else "root"
    messages = [f"Validation error at '{path}': {error.message}"]

    if error.validator == "oneOf" and len(error.path) == 2 and error.path[0] == "parameters":
        messages.append("  Hint: each parameter needs exactly one of 'value' or 'reference'")
        messages.append('  Example: "sku": {"value": "Standard"}')
    elif error.validator == "required":
        missing = error.message.split("'")[1::2]
        messages.append(f"  Required properties missing: {', '.join(missing)}")
        if "$schema" in missing:
            messages.append(f'  Example: "$schema": "{PARAMETERS_SCHEMA_URL}"')
        if "contentVersion" in missing:
            messages.append(f'  Example: "contentVersion": "{CONTENT_VERSION}"')
    elif error.validator == "pattern":
        messages.append(f"  Expected pattern: {error.validator_value}")

    return messages


def check_against_template(
    document: dict[str, Any], template: BicepTemplate, location: str | None = None
) -> list[Finding]:
    """
    Cross-check a parameter document with a template's ``param`` declarations.

    Args:
        document: Parameter document
        template: Parsed template the document is deployed with
        location: Label used in findings (usually the parameter file path)

    Returns:
        Findings; errors block a deployment, warnings are advisory
    """
    findings = []
    entries = document.get("parameters", {})

    for name in entries:
        if name not in template.params:
            findings.append(
                Finding("error", f"Parameter '{name}' is not declared by the template", location)
            )

    for name, param in template.params.items():
        entry = entries.get(name)
        if entry is None:
            if param.required:
                findings.append(
                    Finding("error", f"Required parameter '{name}' has no value", location)
                )
            continue

        if not isinstance(entry, dict) or "value" not in entry:
            continue

        value = entry["value"]
        if param.secure:
            findings.append(
                Finding(
                    "warning",
                    f"Secure parameter '{name}' is given inline; use a Key Vault reference",
                    location,
                )
            )
        findings.extend(_check_value(name, value, param, location))

    return findings


def _check_value(name: str, value: Any, param, location: str | None) -> list[Finding]:
    findings = []
    expected = list if param.type.endswith("[]") else BICEP_TYPES.get(param.type)

    # bool is a subclass of int; an int parameter must not accept true/false
    type_ok = expected is None or (
        isinstance(value, expected) and not (expected is int and isinstance(value, bool))
    )
    if not type_ok:
        findings.append(
            Finding(
                "error",
                f"Parameter '{name}' expects {param.type}, got {type(value).__name__}",
                location,
            )
        )
        return findings

    if param.allowed is not None:
        values = value if isinstance(value, list) else [value]
        for item in values:
            if item not in param.allowed:
                allowed = ", ".join(str(v) for v in param.allowed)
                findings.append(
                    Finding(
                        "error",
                        f"Parameter '{name}' value {item!r} is not allowed (allowed: {allowed})",
                        location,
                    )
                )

    if isinstance(value, int) and not isinstance(value, bool):
        if param.min_value is not None and value < param.min_value:
            findings.append(
                Finding("error", f"Parameter '{name}' is {value}, minimum is {param.min_value}", location)
            )
        if param.max_value is not None and value > param.max_value:
            findings.append(
                Finding("error", f"Parameter '{name}' is {value}, maximum is {param.max_value}", location)
            )

    if isinstance(value, (str, list)):
        if param.min_length is not None and len(value) < param.min_length:
            findings.append(
                Finding(
                    "error",
                    f"Parameter '{name}' length {len(value)} is below {param.min_length}",
                    location,
                )
            )
        if param.max_length is not None and len(value) > param.max_length:
            findings.append(
                Finding(
                    "error",
                    f"Parameter '{name}' length {len(value)} is above {param.max_length}",
                    location,
                )
            )

    return findings
