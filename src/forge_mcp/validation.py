"""Turn loosely-typed input (frontmatter, pasted JSON) into typed nodes.

Validation never raises for bad input; it returns a ``ValidationResult``
whose ``error`` explains what was wrong. Schema checks are delegated to
pydantic ``TypeAdapter``s built over the dataclasses in ``models``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Literal, Mapping, Optional, Required, TypedDict, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ErrorCode, Issue, ValidationError
from .models import (
    NODE_CLASSES,
    NODE_TYPES,
    ChecklistItem,
    ComponentStatus,
    ContainerStatus,
    DecisionCriterion,
    DecisionOption,
    DecisionStatus,
    FieldValue,
    Node,
    TaskPriority,
    TaskStatus,
)
from .utils import now_utc, parse_date

logger = logging.getLogger(__name__)

DateLike = Union[datetime, date, int, float, str]

# Incoming spelling -> dataclass attribute.
_NODE_KEY_ALIASES = {
    "dependsOn": "depends_on",
    "selectedDate": "selected_date",
    "partNumber": "part_number",
    "customFields": "custom_fields",
}
_OPTION_KEY_ALIASES = {"linkedNodeId": "linked_node_id"}

# Incoming spelling -> frontmatter key as written to disk.
_FRONTMATTER_KEY_ALIASES = {
    "dependsOn": "depends_on",
    "selectedDate": "selected_date",
    "part_number": "partNumber",
    "custom_fields": "customFields",
}
_NULLABLE_FRONTMATTER_KEYS = {"selected", "rationale", "selected_date", "parent", "cost", "supplier", "partNumber"}


@dataclass
class ValidationResult:
    """Outcome of a validation call: either ``data`` or ``error`` is set."""

    data: Any = None
    error: ValidationError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.data


def validation_failure(code: ErrorCode, message: str, path: str | None = None,
                       issues: list[Issue] | None = None) -> ValidationResult:
    return ValidationResult(error=ValidationError(code, message, path=path, issues=issues))


# ---------------------------------------------------------------------------
# Frontmatter shapes
# ---------------------------------------------------------------------------


class _BaseFrontmatter(TypedDict, total=False):
    tags: list[str]
    created: DateLike
    modified: DateLike


class DecisionFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["decision"]]
    status: DecisionStatus
    selected: Optional[str]
    options: list[dict[str, Any]]
    criteria: list[dict[str, Any]]
    rationale: Optional[str]
    selected_date: Optional[DateLike]
    parent: Optional[str]


class ComponentFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["component"]]
    status: ComponentStatus
    cost: Optional[float]
    supplier: Optional[str]
    partNumber: Optional[str]
    customFields: dict[str, FieldValue]
    parent: Optional[str]


class TaskFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["task"]]
    status: TaskStatus
    priority: TaskPriority
    depends_on: list[str]
    blocks: list[str]
    checklist: list[dict[str, Any]]
    milestone: str
    parent: Optional[str]


class NoteFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["note"]]
    parent: Optional[str]


class SubsystemFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["subsystem"]]
    status: ContainerStatus
    requirements: list[str]


class AssemblyFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["assembly"]]
    status: ContainerStatus
    requirements: list[str]
    parent: Optional[str]


class ModuleFrontmatter(_BaseFrontmatter, total=False):
    type: Required[Literal["module"]]
    status: ContainerStatus
    requirements: list[str]
    parent: Optional[str]


_FRONTMATTER_SHAPES: dict[str, type] = {
    "decision": DecisionFrontmatter,
    "component": ComponentFrontmatter,
    "task": TaskFrontmatter,
    "note": NoteFrontmatter,
    "subsystem": SubsystemFrontmatter,
    "assembly": AssemblyFrontmatter,
    "module": ModuleFrontmatter,
}


@lru_cache(maxsize=None)
def _node_adapter(node_type: str) -> TypeAdapter:
    return TypeAdapter(NODE_CLASSES[node_type])


@lru_cache(maxsize=None)
def _frontmatter_adapter(node_type: str) -> TypeAdapter:
    return TypeAdapter(_FRONTMATTER_SHAPES[node_type])


# ---------------------------------------------------------------------------
# pydantic error mapping
# ---------------------------------------------------------------------------


_VALUE_ERROR_TYPES = {
    "literal_error",
    "enum",
    "greater_than",
    "greater_than_equal",
    "less_than",
    "less_than_equal",
    "finite_number",
}


def _error_code(error_type: str) -> ErrorCode:
    if error_type == "missing":
        return ErrorCode.MISSING_FIELD
    if error_type in _VALUE_ERROR_TYPES:
        return ErrorCode.INVALID_VALUE
    if error_type.endswith(("_type", "_parsing")):
        return ErrorCode.INVALID_TYPE
    return ErrorCode.PARSE_ERROR


def format_path(loc: tuple | list) -> str:
    """Render a location tuple like ``("options", 0, "name")`` as ``options[0].name``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path


def _from_pydantic(exc: PydanticValidationError) -> ValidationResult:
    errors = exc.errors(include_url=False)
    issues = [Issue(path=format_path(err["loc"]), message=err["msg"]) for err in errors]
    first = errors[0]
    return validation_failure(_error_code(first["type"]), first["msg"], path=issues[0].path, issues=issues)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _split_tags(value: Any) -> Any:
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return value


def _resolve_dates(data: Mapping[str, Any]) -> dict[str, datetime]:
    """Build ``{created, modified}`` from a nested ``dates`` object or flat fields.

    Unparseable or absent values fall back to the current time.
    """
    source = data.get("dates")
    if not isinstance(source, Mapping):
        source = data
    now = now_utc()
    return {
        "created": parse_date(source.get("created")) or now,
        "modified": parse_date(source.get("modified")) or now,
    }


def _rename(item: Any, aliases: Mapping[str, str], allowed: set[str]) -> Any:
    if not isinstance(item, Mapping):
        return item
    renamed = {aliases.get(key, key): value for key, value in item.items()}
    return {key: value for key, value in renamed.items() if key in allowed}


def _field_names(cls: type) -> set[str]:
    return {f.name for f in dataclasses.fields(cls)}


def _has_non_null_default(f: dataclasses.Field) -> bool:
    if f.default_factory is not dataclasses.MISSING:
        return True
    return f.default is not dataclasses.MISSING and f.default is not None


def normalize_node_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rename aliased keys, resolve dates and drop unknown keys for ``data['type']``."""
    cls = NODE_CLASSES[data["type"]]
    fields = {f.name: f for f in dataclasses.fields(cls)}
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        name = _NODE_KEY_ALIASES.get(key, key)
        if name not in fields or name == "dates":
            continue
        if value is None and _has_non_null_default(fields[name]):
            continue
        normalized[name] = value

    normalized["dates"] = _resolve_dates(data)
    if "tags" in normalized:
        normalized["tags"] = _split_tags(normalized["tags"])
    if "selected_date" in normalized:
        normalized["selected_date"] = parse_date(normalized["selected_date"])

    nested = {
        "options": (_OPTION_KEY_ALIASES, _field_names(DecisionOption)),
        "criteria": ({}, _field_names(DecisionCriterion)),
        "checklist": ({}, _field_names(ChecklistItem)),
    }
    for key, (aliases, allowed) in nested.items():
        if isinstance(normalized.get(key), list):
            normalized[key] = [_rename(item, aliases, allowed) for item in normalized[key]]
    return normalized


def _check_type(data: Mapping[str, Any]) -> ValidationResult | None:
    node_type = data.get("type")
    if node_type is None or node_type == "":
        return validation_failure(ErrorCode.MISSING_FIELD, "Missing required field: type", path="type")
    if not isinstance(node_type, str) or node_type not in NODE_CLASSES:
        return validation_failure(
            ErrorCode.INVALID_VALUE,
            f"Invalid node type: {node_type}. Must be one of: {', '.join(NODE_TYPES)}",
            path="type",
        )
    return None


def _check_required_text(data: Mapping[str, Any], key: str) -> ValidationResult | None:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return validation_failure(ErrorCode.MISSING_FIELD, f"Missing required field: {key}", path=key)
    if not isinstance(value, str):
        return validation_failure(ErrorCode.INVALID_TYPE, f"Field {key} must be a string", path=key)
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_node(data: Mapping[str, Any]) -> ValidationResult:
    """Validate raw key/value data into one of the seven typed node variants.

    Required fields are checked in order (type, id, title) and the first
    failure wins. Both snake_case frontmatter keys and camelCase keys are
    accepted. Optional fields receive the variant's defaults.
    """
    if not isinstance(data, Mapping):
        return validation_failure(ErrorCode.INVALID_TYPE, "Node data must be a mapping")
    for check in (_check_type(data), _check_required_text(data, "id"), _check_required_text(data, "title")):
        if check is not None:
            return check

    node_type = data["type"]
    try:
        node: Node = _node_adapter(node_type).validate_python(normalize_node_data(data))
    except PydanticValidationError as exc:
        result = _from_pydantic(exc)
        logger.debug("Node %r failed validation: %s", data.get("id"), result.error)
        return result
    return ValidationResult(data=node)


def validate_frontmatter(data: Mapping[str, Any]) -> ValidationResult:
    """Check frontmatter shape without building a node.

    Keys keep their on-disk spelling (``depends_on``, ``partNumber``, ...).
    Keys outside the schema, such as ``title`` or ``id``, pass through
    unchanged so callers can merge in values extracted from the file.
    """
    if not isinstance(data, Mapping):
        return validation_failure(ErrorCode.INVALID_TYPE, "Frontmatter must be a mapping")
    failed = _check_type(data)
    if failed is not None:
        return failed

    normalized: dict[str, Any] = {}
    for key, value in data.items():
        key = _FRONTMATTER_KEY_ALIASES.get(key, key)
        if value is None and key not in _NULLABLE_FRONTMATTER_KEYS:
            continue
        normalized[key] = value
    if "tags" in normalized:
        normalized["tags"] = _split_tags(normalized["tags"])

    try:
        shaped = _frontmatter_adapter(data["type"]).validate_python(normalized)
    except PydanticValidationError as exc:
        return _from_pydantic(exc)
    return ValidationResult(data={**normalized, **shaped})
