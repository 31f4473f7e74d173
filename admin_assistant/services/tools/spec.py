"""Building blocks shared by the tool modules."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict

from admin_assistant.models.tool import ToolDeclaration, ToolName, ToolResult

# Coroutine handlers run on the event loop, plain ones on a worker thread
Handler = Callable[[Any, str], Union[ToolResult, Awaitable[ToolResult]]]
Preview = Callable[[Any], Dict[str, Any]]


class ToolArgs(BaseModel):
    """Base for tool argument models. Unknown keys from the model are ignored."""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


@dataclass(frozen=True)
class ToolSpec:
    """A tool declaration bound to its argument model and handler."""
    name: ToolName
    description: str
    args_model: Type[ToolArgs]
    handler: Handler
    destructive: bool = False
    read_only: bool = False
    audit_action: Optional[str] = None
    target_table: Optional[str] = None
    # Argument holding the primary record id, used when the handler fails
    target_arg: Optional[str] = None
    # Chooses the audit action from validated args when one tool logs several
    audit_action_for: Optional[Callable[[Any], str]] = None
    target_table_for: Optional[Callable[[Any], str]] = None
    # Describes what a destructive call would affect, without changing anything
    preview: Optional[Preview] = None

    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters_schema=json_schema_for(self.args_model),
            destructive=self.destructive,
            read_only=self.read_only,
            audit_action=self.audit_action,
            target_table=self.target_table,
        )

    def resolve_audit_action(self, args: Any) -> Optional[str]:
        if self.audit_action_for is not None and args is not None:
            return self.audit_action_for(args)
        return self.audit_action

    def resolve_target_table(self, args: Any) -> Optional[str]:
        if self.target_table_for is not None and args is not None:
            return self.target_table_for(args)
        return self.target_table

    def resolve_target_id(self, args: Any, result: Optional[ToolResult] = None) -> Optional[str]:
        if result is not None and result.target_id:
            return result.target_id
        if self.target_arg and args is not None:
            value = getattr(args, self.target_arg, None)
            if isinstance(value, Enum):
                value = value.value
            return str(value) if value is not None else None
        return None


def _simplify(node: Any) -> Any:
    """Drop pydantic titles and collapse Optional[X] (anyOf X|null) to X."""
    if isinstance(node, list):
        return [_simplify(item) for item in node]
    if not isinstance(node, dict):
        return node

    node = {k: v for k, v in node.items() if k != "title"}
    any_of = node.get("anyOf")
    if isinstance(any_of, list):
        non_null = [option for option in any_of if option.get("type") != "null"]
        if len(non_null) == 1:
            merged = dict(non_null[0])
            merged.update({k: v for k, v in node.items() if k != "anyOf"})
            node = merged
    if node.get("default", object()) is None:
        node.pop("default")
    simplified = {k: _simplify(v) for k, v in node.items() if k != "properties"}
    if isinstance(node.get("properties"), dict):
        # Property names are field names, not schema keywords
        simplified["properties"] = {name: _simplify(prop) for name, prop in node["properties"].items()}
    return simplified


def _inline_refs(node: Any, defs: Dict[str, Any]) -> Any:
    if isinstance(node, list):
        return [_inline_refs(item, defs) for item in node]
    if not isinstance(node, dict):
        return node
    ref = node.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/$defs/"):
        target = dict(defs[ref.split("/")[-1]])
        target.update({k: v for k, v in node.items() if k != "$ref"})
        return _inline_refs(target, defs)
    return {k: _inline_refs(v, defs) for k, v in node.items()}


def json_schema_for(args_model: Type[BaseModel]) -> Dict[str, Any]:
    """JSON Schema for a tool's arguments in the subset function-calling models accept."""
    raw = args_model.model_json_schema()
    defs = raw.pop("$defs", {})
    schema = _simplify(_inline_refs(raw, defs))
    schema.setdefault("properties", {})
    schema["type"] = "object"
    return schema


def utcnow() -> datetime:
    return datetime.utcnow()


def to_naive_utc(value: datetime) -> datetime:
    """Store datetimes as naive UTC, matching the rest of the schema."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
