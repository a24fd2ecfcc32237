"""
Line-oriented reader for Bicep source.

Extracts the declarations bicep-ops cares about: ``param`` statements with
their decorators, ``module`` calls with condition, explicit ``dependsOn`` and
output references, and ``output`` statements. Resource bodies are not
interpreted; the deployment engine owns their semantics.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bicep_ops.exceptions import TemplateNotFoundError
from bicep_ops.models.finding import Finding

PARAM_RE = re.compile(r"^param\s+([A-Za-z_]\w*)\s+([A-Za-z_][\w.]*(?:\[\])?)(\s*=\s*.+)?$")
MODULE_RE = re.compile(r"^module\s+([A-Za-z_]\w*)\s+'([^']+)'\s*=\s*(.*)$")
OUTPUT_RE = re.compile(r"^output\s+([A-Za-z_]\w*)\s+([A-Za-z_][\w.]*(?:\[\])?)\s*=")
DECLARATION_RE = re.compile(
    r"^(param|var|resource|module|output|type|func|import|targetScope|metadata)\b"
)
OUTPUT_REF_RE = re.compile(r"\b([A-Za-z_]\w*)(?:\[[^\]]*\])?\.outputs\.([A-Za-z_]\w*)")
ALLOWED_VALUE_RE = re.compile(r"'((?:[^'\\]|\\.)*)'|(-?\d+)|\b(true|false)\b")
NUMERIC_DECORATOR_RE = re.compile(r"^@(?:sys\.)?(minValue|maxValue|minLength|maxLength)\(\s*(-?\d+)\s*\)")
DESCRIPTION_RE = re.compile(r"^@(?:sys\.)?description\(\s*'((?:[^'\\]|\\.)*)'\s*\)")


@dataclass
class BicepParam:
    """A ``param`` declaration."""

    name: str
    type: str
    has_default: bool = False
    secure: bool = False
    allowed: list[Any] | None = None
    min_value: int | None = None
    max_value: int | None = None
    min_length: int | None = None
    max_length: int | None = None
    description: str | None = None
    line: int = 0

    @property
    def required(self) -> bool:
        return not self.has_default


@dataclass
class BicepModule:
    """A ``module`` call."""

    name: str
    path: str
    condition: str | None = None
    loop: bool = False
    depends_on: list[str] = field(default_factory=list)
    output_refs: dict[str, set[str]] = field(default_factory=dict)
    line: int = 0

    @property
    def referenced_modules(self) -> set[str]:
        return set(self.output_refs)


@dataclass
class BicepTemplate:
    """Declarations read from one Bicep file."""

    path: Path | None = None
    params: dict[str, BicepParam] = field(default_factory=dict)
    modules: dict[str, BicepModule] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)


def parse_template(path: Path) -> BicepTemplate:
    """
    Read a Bicep file.

    Raises:
        TemplateNotFoundError: The file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise TemplateNotFoundError(str(path))
    template = parse_source(path.read_text(encoding="utf-8"))
    template.path = path
    return template


def parse_source(text: str) -> BicepTemplate:
    """Read declarations from Bicep source text."""
    template = BicepTemplate()
    lines = [_strip_comment(line).rstrip() for line in _strip_block_comments(text).splitlines()]

    decorators: list[str] = []
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        lineno = i + 1

        if not stripped:
            i += 1
            continue

        if stripped.startswith("@"):
            decorator = stripped
            while not _balanced(decorator) and i + 1 < len(lines):
                i += 1
                decorator += "\n" + lines[i].strip()
            decorators.append(decorator)
            i += 1
            continue

        param_match = PARAM_RE.match(stripped)
        module_match = MODULE_RE.match(stripped)
        output_match = OUTPUT_RE.match(stripped)

        if param_match:
            param = BicepParam(
                name=param_match.group(1),
                type=param_match.group(2),
                has_default=param_match.group(3) is not None,
                line=lineno,
            )
            _apply_decorators(param, decorators)
            template.params[param.name] = param
        elif module_match:
            body_end = _block_end(lines, i)
            module = _parse_module(module_match, lines[i : body_end + 1], lineno)
            template.modules[module.name] = module
            i = body_end
        elif output_match:
            template.outputs[output_match.group(1)] = output_match.group(2)

        if DECLARATION_RE.match(stripped):
            decorators = []
        i += 1

    return template


def _parse_module(match: re.Match, body_lines: list[str], lineno: int) -> BicepModule:
    module = BicepModule(name=match.group(1), path=match.group(2), line=lineno)

    rest = match.group(3).strip()
    if rest.startswith("if"):
        module.condition = _parenthesized(rest[2:].strip())
    elif rest.startswith("[") and re.match(r"^\[\s*for\b", rest):
        module.loop = True

    body = "\n".join(body_lines)
    depends = re.search(r"\bdependsOn\s*:\s*\[(.*?)\]", body, re.S)
    if depends:
        module.depends_on = re.findall(r"(?m)^\s*([A-Za-z_]\w*)", depends.group(1).replace(",", "\n"))

    for source, output in OUTPUT_REF_RE.findall(body):
        module.output_refs.setdefault(source, set()).add(output)

    return module


def _apply_decorators(param: BicepParam, decorators: list[str]) -> None:
    for decorator in decorators:
        numeric = NUMERIC_DECORATOR_RE.match(decorator)
        description = DESCRIPTION_RE.match(decorator)
        if re.match(r"^@(?:sys\.)?secure\(\s*\)", decorator):
            param.secure = True
        elif re.match(r"^@(?:sys\.)?allowed\(", decorator):
            param.allowed = _parse_allowed(decorator)
        elif numeric:
            name = {
                "minValue": "min_value",
                "maxValue": "max_value",
                "minLength": "min_length",
                "maxLength": "max_length",
            }[numeric.group(1)]
            setattr(param, name, int(numeric.group(2)))
        elif description:
            param.description = description.group(1).replace("\\'", "'")


def _parse_allowed(decorator: str) -> list[Any]:
    start = decorator.find("[")
    end = decorator.rfind("]")
    if start == -1 or end == -1:
        return []
    values: list[Any] = []
    for string, number, boolean in ALLOWED_VALUE_RE.findall(decorator[start + 1 : end]):
        if boolean:
            values.append(boolean == "true")
        elif number:
            values.append(int(number))
        else:
            values.append(string.replace("\\'", "'"))
    return values


def _parenthesized(text: str) -> str | None:
    """Contents of the leading parenthesized group, or None."""
    if not text.startswith("("):
        return None
    depth = 0
    for index, char in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[1:index].strip()
    return None


def _strip_block_comments(text: str) -> str:
    # Keep line count stable so reported line numbers stay correct
    return re.sub(r"/\*.*?\*/", lambda m: "\n" * m.group(0).count("\n"), text, flags=re.S)


def _strip_comment(line: str) -> str:
    in_string = False
    i = 0
    while i < len(line):
        char = line[i]
        if in_string and char == "\\":
            i += 2
            continue
        if char == "'":
            in_string = not in_string
        elif not in_string and line.startswith("//", i):
            return line[:i]
        i += 1
    return line


def _structure(text: str) -> str:
    """Text with string literals removed."""
    return re.sub(r"'(?:[^'\\]|\\.)*'", "''", text)


def _balanced(text: str) -> bool:
    bare = _structure(text)
    return bare.count("(") == bare.count(")") and bare.count("[") == bare.count("]")


def _block_end(lines: list[str], start: int) -> int:
    """Index of the line closing the brace block opened on lines[start]."""
    depth = 0
    opened = False
    for index in range(start, len(lines)):
        bare = _structure(lines[index])
        for char in bare:
            if char == "{":
                depth += 1
                opened = True
            elif char == "}":
                depth -= 1
        if opened and depth <= 0:
            return index
    return len(lines) - 1


def check_plan_against_template(plan, template: BicepTemplate) -> list[Finding]:
    """
    Compare the module composition plan with the orchestration template.

    Args:
        plan: DeploymentPlan describing the expected module calls
        template: Parsed orchestration template

    Returns:
        Findings; errors where the template would not deploy what the plan says
    """
    findings = []
    location = str(template.path) if template.path else "template"

    for module in plan.modules:
        declared = template.modules.get(module.name)
        if declared is None:
            findings.append(
                Finding("error", f"Module '{module.name}' from the plan is not declared", location)
            )
            continue

        where = f"{location}:{declared.line}"

        if _normalize_path(declared.path) != _normalize_path(module.template):
            findings.append(
                Finding(
                    "warning",
                    f"Module '{module.name}' uses '{declared.path}', plan expects '{module.template}'",
                    where,
                )
            )

        expected_condition = to_camel_case(module.condition) if module.condition else None
        if (declared.condition or None) != expected_condition:
            findings.append(
                Finding(
                    "error",
                    f"Module '{module.name}' condition is {declared.condition or 'none'}, "
                    f"plan expects {expected_condition or 'none'}",
                    where,
                )
            )

        for dependency in module.depends_on:
            if dependency not in declared.depends_on and dependency not in declared.referenced_modules:
                findings.append(
                    Finding(
                        "error",
                        f"Module '{module.name}' does not depend on '{dependency}'",
                        where,
                    )
                )

        for parameter, reference in module.inputs.items():
            source, _, output = reference.partition(".")
            if output not in declared.output_refs.get(source, set()):
                findings.append(
                    Finding(
                        "warning",
                        f"Module '{module.name}' does not read {source}.outputs.{output} "
                        f"(plan input '{parameter}')",
                        where,
                    )
                )

        for dependency in declared.depends_on:
            if dependency not in module.depends_on:
                findings.append(
                    Finding(
                        "warning",
                        f"Module '{module.name}' depends on '{dependency}', which the plan does not list",
                        where,
                    )
                )

    planned = set(plan.names)
    for name, declared in template.modules.items():
        if name not in planned:
            findings.append(
                Finding(
                    "warning",
                    f"Module '{name}' is declared but not part of the plan",
                    f"{location}:{declared.line}",
                )
            )

    return findings


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/").removeprefix("./")


def to_camel_case(name: str) -> str:
    """Convert a snake_case config key to a Bicep identifier (enable_x_y -> enableXY)."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
