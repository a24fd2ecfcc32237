"""
Template loading and rendering utilities using Jinja2.
"""

from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template

DEFAULT_TEMPLATES = Path(__file__).parent.parent / "templates"


class TemplateLoader:
    """
    Loads and renders Jinja2 templates.

    Templates placed in the workspace's ``templates/`` directory take
    precedence over the packaged defaults of the same name.
    """

    def __init__(self, workspace_root: Path | None = None):
        """
        Initialize template loader.

        Args:
            workspace_root: Path to workspace directory (None for defaults only)
        """
        self.workspace_templates = Path(workspace_root) / "templates" if workspace_root else None
        self.default_templates = DEFAULT_TEMPLATES
        self._env: Environment | None = None
        self._template_cache: dict[str, Template] = {}

    @property
    def env(self) -> Environment:
        """Get or create the Jinja2 environment (cached)."""
        if self._env is None:
            template_dirs = []

            if self.workspace_templates is not None and self.workspace_templates.exists():
                template_dirs.append(str(self.workspace_templates))

            if self.default_templates.exists():
                template_dirs.append(str(self.default_templates))

            if not template_dirs:
                raise FileNotFoundError("No template directories found")

            self._env = Environment(
                loader=FileSystemLoader(template_dirs),
                trim_blocks=True,
                lstrip_blocks=True,
                keep_trailing_newline=True,
                undefined=StrictUndefined,
            )
            self._env.filters["bicep_value"] = bicep_value

        return self._env

    def load_template(self, template_name: str) -> Template:
        """Load a Jinja2 template with caching."""
        if template_name not in self._template_cache:
            self._template_cache[template_name] = self.env.get_template(template_name)
        return self._template_cache[template_name]

    def render(self, template_name: str, context: dict) -> str:
        """Render a template to a string."""
        context = dict(context)
        context.setdefault("timestamp", datetime.now().isoformat(timespec="seconds"))
        return self.load_template(template_name).render(**context)


def bicep_value(value) -> str:
    """Render a Python scalar as a Bicep literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
