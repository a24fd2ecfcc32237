"""
Custom exceptions for bicep-ops with helpful error messages.
"""


class BicepOpsError(Exception):
    """Base exception for bicep-ops errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class WorkspaceError(BicepOpsError):
    """Errors related to workspace management."""

    pass


class WorkspaceNotFoundError(WorkspaceError):
    """Workspace not found or not initialized."""

    def __init__(self, path: str = None):
        message = "Not in a bicep-ops workspace."
        if path:
            message = f"No bicep-ops workspace found at: {path}"

        suggestion = (
            "Initialize a new workspace with:\n"
            "  bicep-ops init <workspace-dir>\n\n"
            "Or navigate to an existing workspace directory."
        )
        super().__init__(message, suggestion)


class ConfigurationError(BicepOpsError):
    """Configuration file errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the bicep-ops.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv bicep-ops.yaml bicep-ops.yaml.backup\n"
            "  bicep-ops init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class EnvironmentNotFoundError(ConfigurationError):
    """Environment profile not found in configuration."""

    def __init__(self, environment: str, available: list[str] = None):
        message = f"Environment '{environment}' not found in configuration."

        if available:
            env_list = "\n  - ".join(available)
            suggestion = (
                f"Available environments:\n  - {env_list}\n\n"
                "Or add the environment under 'environments:' in bicep-ops.yaml"
            )
        else:
            suggestion = (
                "Add environment profiles to bicep-ops.yaml:\n"
                "  environments:\n"
                "    dev:\n"
                "      location: eastus2\n"
                "      skus:\n"
                "        app_service_plan: B1"
            )
        super().__init__(message, suggestion)


class NamingError(BicepOpsError):
    """A resource name cannot be built from the naming inputs."""

    def __init__(self, message: str, suggestion: str = None):
        if suggestion is None:
            suggestion = (
                "Use a shorter prefix or workload in bicep-ops.yaml:\n"
                "  project:\n"
                "    prefix: <2-10 lowercase letters/digits>\n"
                "    workload: <2-20 lowercase letters/digits>"
            )
        super().__init__(message, suggestion)


class ParameterError(BicepOpsError):
    """Errors related to deployment parameter files."""

    pass


class ParameterFileNotFoundError(ParameterError):
    """Parameter file for an environment does not exist."""

    def __init__(self, path: str, environment: str = None):
        message = f"Parameter file not found: {path}"
        if environment:
            suggestion = (
                "Generate it from the environment profile:\n"
                f"  bicep-ops params generate --env {environment}"
            )
        else:
            suggestion = "Generate parameter files with:\n  bicep-ops params generate"
        super().__init__(message, suggestion)


class ParameterValidationError(ParameterError):
    """Parameter file failed validation."""

    def __init__(self, errors: list[str], file_path: str = None):
        error_list = "\n  - ".join(errors)
        message = f"Parameter validation failed with {len(errors)} error(s):\n  - {error_list}"

        if file_path:
            message = f"Parameter validation failed for {file_path}:\n  - {error_list}"

        suggestion = (
            "Fix the parameter file or regenerate it:\n"
            "  bicep-ops params generate --env <env>\n\n"
            "Each parameter needs exactly one of 'value' or 'reference'."
        )
        super().__init__(message, suggestion)


class TemplateNotFoundError(BicepOpsError):
    """Orchestration template not found."""

    def __init__(self, path: str):
        message = f"Template not found: {path}"
        suggestion = (
            "Check paths.main_template in bicep-ops.yaml, or scaffold one with:\n"
            "  bicep-ops init . --with-templates"
        )
        super().__init__(message, suggestion)


class PlanError(BicepOpsError):
    """Module composition plan is inconsistent."""

    def __init__(self, errors: list[str]):
        error_list = "\n  - ".join(errors)
        message = f"Deployment plan has {len(errors)} problem(s):\n  - {error_list}"
        suggestion = (
            "Review the 'plan:' section of bicep-ops.yaml.\n"
            "Modules may only depend on modules declared before them, and a module\n"
            "reading outputs of a conditional module must share its condition."
        )
        super().__init__(message, suggestion)


class AzureCliError(BicepOpsError):
    """Errors raised while invoking the az CLI."""

    pass


class AzureCliNotFoundError(AzureCliError):
    """The az executable is not installed."""

    def __init__(self, executable: str = "az"):
        message = f"Azure CLI executable not found: {executable}"
        suggestion = (
            "Install the Azure CLI and sign in:\n"
            "  https://learn.microsoft.com/cli/azure/install-azure-cli\n"
            "  az login"
        )
        super().__init__(message, suggestion)


class ScannerError(BicepOpsError):
    """Errors raised by the security scanner integration."""

    pass


class ScannerNotFoundError(ScannerError):
    """Checkov is not installed."""

    def __init__(self):
        message = "checkov is not installed."
        suggestion = (
            "Install it with:\n"
            "  pip install checkov\n\n"
            "Or skip the scan:\n"
            "  bicep-ops deploy --env <env> --skip-security-scan"
        )
        super().__init__(message, suggestion)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, BicepOpsError):
        output = f"[red]Error:[/red] {error.message}"
        if error.suggestion:
            output += f"\n\n[yellow]{error.suggestion}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {str(error)}"
