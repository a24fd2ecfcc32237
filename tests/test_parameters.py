"""
Tests for deployment parameter files.
"""

import json

import pytest

from bicep_ops.bicep import parse_source, parse_template
from bicep_ops.exceptions import (
    ParameterError,
    ParameterFileNotFoundError,
    ParameterValidationError,
)
from bicep_ops.models.environment import DEFAULT_ENVIRONMENTS, EnvironmentProfile
from bicep_ops.naming import NamingConvention
from bicep_ops.parameters import (
    CONTENT_VERSION,
    PARAMETERS_SCHEMA_URL,
    build_parameters,
    check_against_template,
    load_parameter_file,
    sku_parameter,
    template_parameters,
    validate_document,
    validate_parameter_file,
    write_parameter_file,
)


def profile_for(environment):
    return EnvironmentProfile.from_dict(environment, DEFAULT_ENVIRONMENTS[environment], "eastus2")


def values_of(doc):
    return {k: v["value"] for k, v in doc["parameters"].items() if "value" in v}


def document(**parameters):
    return {
        "$schema": PARAMETERS_SCHEMA_URL,
        "contentVersion": CONTENT_VERSION,
        "parameters": parameters,
    }


class TestBuildParameters:
    """Tests for build_parameters()."""

    def test_prod_document(self):
        doc = build_parameters(profile_for("prod"), NamingConvention("contoso", "webapp", "prod"))
        values = values_of(doc)

        assert doc["$schema"] == PARAMETERS_SCHEMA_URL
        assert doc["contentVersion"] == "1.0.0.0"
        assert values["environment"] == "prod"
        assert values["prefix"] == "contoso"
        assert values["zoneRedundant"] is True
        assert values["logRetentionDays"] == 365
        assert values["enablePrivateEndpoints"] is True
        assert values["enableDdosProtection"] is True
        assert values["appServicePlanSku"] == "P1v3"
        assert values["keyVaultSku"] == "premium"

    def test_dev_disables_network_features(self):
        values = values_of(
            build_parameters(profile_for("dev"), NamingConvention("contoso", "webapp", "dev"))
        )
        assert values["enablePrivateEndpoints"] is False
        assert values["enableDdosProtection"] is False
        assert values["storageAccountSku"] == "Standard_LRS"

    def test_generated_document_is_schema_valid(self):
        for environment in DEFAULT_ENVIRONMENTS:
            doc = build_parameters(
                profile_for(environment), NamingConvention("contoso", "webapp", environment)
            )
            assert validate_document(doc) == []

    def test_sku_parameter(self):
        assert sku_parameter("sql_database") == "sqlDatabaseSku"

    def test_template_parameters_include_extra_flags(self):
        names = [p.name for p in template_parameters(profile_for("dev"), {"enable_waf"})]
        assert "enableWaf" in names
        assert names.count("enableDiagnostics") == 1


class TestSchemaValidation:
    """Tests for validate_document() and validate_parameter_file()."""

    def test_key_vault_reference_is_valid(self, dev_parameters):
        assert validate_document(load_parameter_file(dev_parameters)) == []

    def test_validate_parameter_file(self, dev_parameters):
        assert validate_parameter_file(dev_parameters) == (True, [])

    def test_validate_parameter_file_reports_schema_errors(self, tmp_path):
        path = tmp_path / "dev.parameters.json"
        path.write_text(json.dumps({"parameters": {"environment": {"value": "dev"}}}))

        valid, errors = validate_parameter_file(path)

        assert not valid
        assert any("contentVersion" in e for e in errors)

    def test_validate_parameter_file_invalid_json(self, tmp_path):
        path = tmp_path / "dev.parameters.json"
        path.write_text("{not json")

        valid, errors = validate_parameter_file(path)

        assert not valid
        assert errors[0].startswith("Invalid JSON")

    def test_validate_parameter_file_missing(self, tmp_path):
        with pytest.raises(ParameterFileNotFoundError):
            validate_parameter_file(tmp_path / "qa.parameters.json", "staging")

    def test_missing_header(self):
        errors = validate_document({"parameters": {}})
        text = "\n".join(errors)
        assert "Required properties missing" in text
        assert "$schema" in text
        assert "contentVersion" in text

    def test_value_and_reference_together(self):
        errors = validate_document(
            document(
                password={
                    "value": "x",
                    "reference": {"keyVault": {"id": "/subscriptions/1"}, "secretName": "pw"},
                }
            )
        )
        assert any("parameters.password" in e for e in errors)
        assert any("exactly one of 'value' or 'reference'" in e for e in errors)

    def test_bad_content_version(self):
        doc = document(environment={"value": "dev"})
        doc["contentVersion"] = "1.0"
        errors = validate_document(doc)
        assert any("Expected pattern" in e for e in errors)

    def test_key_vault_id_must_be_resource_id(self):
        doc = document(password={"reference": {"keyVault": {"id": "kv-shared"}, "secretName": "pw"}})
        assert validate_document(doc)


class TestLoadParameterFile:
    """Tests for reading and writing parameter files."""

    def test_missing_file_suggests_generate(self, tmp_path):
        with pytest.raises(ParameterFileNotFoundError) as exc_info:
            load_parameter_file(tmp_path / "prod.parameters.json", "prod")
        assert "params generate --env prod" in exc_info.value.suggestion

    def test_non_object(self, tmp_path):
        path = tmp_path / "dev.parameters.json"
        path.write_text("[]")
        with pytest.raises(ParameterError, match="Expected a JSON object"):
            load_parameter_file(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "dev.parameters.json"
        path.write_text("{not json")
        with pytest.raises(ParameterError, match="Invalid JSON"):
            load_parameter_file(path)

    def test_write_rejects_invalid_document(self, tmp_path):
        path = tmp_path / "dev.parameters.json"
        doc = document(**{"app-serviceSku": {"value": "B1"}})

        with pytest.raises(ParameterValidationError) as exc_info:
            write_parameter_file(path, doc)

        assert "dev.parameters.json" in exc_info.value.message
        assert not path.exists()

    def test_write_then_load(self, tmp_path):
        path = tmp_path / "nested" / "dev.parameters.json"
        doc = document(environment={"value": "dev"})

        write_parameter_file(path, doc)

        assert path.read_text().endswith("}\n")
        assert load_parameter_file(path) == doc
        assert json.loads(path.read_text())["parameters"]["environment"]["value"] == "dev"


class TestCheckAgainstTemplate:
    """Tests for check_against_template()."""

    def test_fixture_parameters_match(self, main_bicep, dev_parameters):
        findings = check_against_template(
            load_parameter_file(dev_parameters), parse_template(main_bicep), "dev.parameters.json"
        )
        assert findings == []

    def test_unknown_and_missing(self, main_bicep):
        doc = document(environment={"value": "dev"}, sku={"value": "B1"})
        findings = check_against_template(doc, parse_template(main_bicep))
        messages = [f.message for f in findings if f.is_error]

        assert "Parameter 'sku' is not declared by the template" in messages
        assert "Required parameter 'prefix' has no value" in messages
        assert "Required parameter 'sqlAdminPassword' has no value" in messages
        assert not any("'location'" in m for m in messages)

    def test_value_constraints(self, main_bicep):
        doc = document(
            environment={"value": "qa"},
            prefix={"value": "c"},
            logRetentionDays={"value": 10},
            sqlAdminPassword={"value": "P@ssw0rd"},
        )
        findings = check_against_template(doc, parse_template(main_bicep), "dev.parameters.json")
        errors = [f.message for f in findings if f.is_error]
        warnings = [f.message for f in findings if not f.is_error]

        assert "Parameter 'environment' value 'qa' is not allowed (allowed: dev, staging, prod)" in errors
        assert "Parameter 'prefix' length 1 is below 2" in errors
        assert "Parameter 'logRetentionDays' is 10, minimum is 30" in errors
        assert warnings == [
            "Secure parameter 'sqlAdminPassword' is given inline; use a Key Vault reference"
        ]
        assert all(f.location == "dev.parameters.json" for f in findings)

    def test_type_mismatch(self):
        template = parse_source("param count int\nparam enabled bool\nparam zones string[]\n")
        doc = document(count={"value": True}, enabled={"value": "yes"}, zones={"value": ["1", "2"]})

        messages = [f.message for f in check_against_template(doc, template)]
        assert messages == [
            "Parameter 'count' expects int, got bool",
            "Parameter 'enabled' expects bool, got str",
        ]

    def test_maximum(self):
        template = parse_source("@maxValue(90)\nparam days int\n@maxLength(3)\nparam code string\n")
        doc = document(days={"value": 91}, code={"value": "abcd"})

        messages = [f.message for f in check_against_template(doc, template)]
        assert "Parameter 'days' is 91, maximum is 90" in messages
        assert "Parameter 'code' length 4 is above 3" in messages

    def test_generated_parameters_match_rendered_template(self, temp_workspace):
        from bicep_ops.scaffold import render_main_template

        profile = temp_workspace.profile("staging")
        template = parse_source(render_main_template(temp_workspace.plan(), profile))
        doc = build_parameters(profile, temp_workspace.naming("staging"))

        assert check_against_template(doc, template) == []
