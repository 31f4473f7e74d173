"""Tool registry: the static catalog of assistant tools."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from admin_assistant.infra.error_handler import ToolValidationError
from admin_assistant.models.tool import ToolDeclaration, ToolName
from admin_assistant.services.tools import (
    ai_behavior,
    automation,
    bulk,
    chat,
    contacts,
    emails,
    integrations,
    social,
    system,
)
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec

logger = logging.getLogger(__name__)

TOOL_MODULES = (chat, contacts, emails, ai_behavior, system, bulk, automation, social, integrations)


class ToolNotFoundError(LookupError):
    """Name is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"tool not found: {name}")


def _build_catalog() -> Dict[ToolName, ToolSpec]:
    """
    Collect every module's SPECS and check the catalog is closed.

    Raises:
        RuntimeError: If a ToolName has no spec or more than one, or a
            side-effecting tool has no audit action
    """
    catalog: Dict[ToolName, ToolSpec] = {}
    for module in TOOL_MODULES:
        for spec in module.SPECS:
            if spec.name in catalog:
                raise RuntimeError(f"Tool declared twice: {spec.name.value}")
            if not spec.read_only and not spec.audit_action:
                raise RuntimeError(f"Side-effecting tool without audit action: {spec.name.value}")
            if spec.destructive and spec.read_only:
                raise RuntimeError(f"Tool cannot be both destructive and read-only: {spec.name.value}")
            catalog[spec.name] = spec

    missing = [name.value for name in ToolName if name not in catalog]
    if missing:
        raise RuntimeError(f"Tools without implementation: {', '.join(missing)}")
    return catalog


_CATALOG = _build_catalog()
_DECLARATIONS: Dict[ToolName, ToolDeclaration] = {name: spec.declaration() for name, spec in _CATALOG.items()}


def resolve_name(name: str) -> Optional[ToolName]:
    """Map an untrusted name from the model onto the closed set, or None."""
    try:
        return ToolName(name)
    except ValueError:
        return None


def list_tools() -> List[ToolDeclaration]:
    """All tool declarations, in catalog order."""
    return list(_DECLARATIONS.values())


def get_declaration(name: str) -> ToolDeclaration:
    tool_name = resolve_name(name)
    if tool_name is None:
        raise ToolNotFoundError(name)
    return _DECLARATIONS[tool_name]


def get_schema(name: str) -> Dict[str, Any]:
    """
    Parameter JSON schema of one tool.

    Raises:
        ToolNotFoundError: If the name is not registered
    """
    return get_declaration(name).parameters_schema


def get_spec(name: str) -> ToolSpec:
    tool_name = resolve_name(name)
    if tool_name is None:
        raise ToolNotFoundError(name)
    return _CATALOG[tool_name]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        message = item.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{location}: {message}")
    return "validation failed: " + "; ".join(parts)


def validate_arguments(name: str, arguments: Any) -> Tuple[ToolSpec, ToolArgs]:
    """
    Validate model-supplied arguments against a tool's argument model.

    Args:
        name: Tool name from the model
        arguments: Decoded arguments (must be a JSON object)

    Returns:
        (spec, validated args)

    Raises:
        ToolNotFoundError: If the name is not registered
        ToolValidationError: If the arguments do not match the schema
    """
    spec = get_spec(name)
    if not isinstance(arguments, dict):
        raise ToolValidationError("validation failed: arguments must be a JSON object")
    try:
        return spec, spec.args_model.model_validate(arguments)
    except ValidationError as e:
        raise ToolValidationError(_format_validation_error(e))
