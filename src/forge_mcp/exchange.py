"""Whole-project exchange: JSON envelope, Markdown file tree, project merge."""

from __future__ import annotations

import dataclasses
import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Annotated, Any, Iterable, Literal, Mapping, NotRequired, Optional, TypedDict

from pydantic import StringConstraints, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ErrorCode, Issue
from .markdown_parser import parse_markdown, serialize_node
from .models import Node, Project, ProjectMetadata
from .store import (
    NODE_DIRECTORIES,
    PROJECT_FILE,
    ParseIssue,
    get_node_id_from_path,
    metadata_from_dict,
    metadata_to_dict,
    parse_project_file,
)
from .utils import generate_node_id, now_utc, parse_date, slugify, to_iso
from .validation import ValidationResult, validation_failure, format_path, validate_node

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
EXPORT_APP_NAME = "Forge"

ConflictResolution = Literal["skip", "overwrite", "rename"]

_NonEmpty = Annotated[str, StringConstraints(min_length=1)]


class _Position(TypedDict):
    x: float
    y: float


class ExportMetadata(TypedDict):
    version: str
    exportedAt: str
    exportedBy: str
    nodeCount: int


class ExportProject(TypedDict):
    id: _NonEmpty
    name: _NonEmpty
    createdAt: str
    modifiedAt: str
    description: NotRequired[Optional[str]]
    nodeOrder: NotRequired[Optional[list[str]]]
    nodePositions: NotRequired[Optional[dict[str, _Position]]]


class JSONExport(TypedDict):
    metadata: NotRequired[ExportMetadata]
    project: ExportProject
    nodes: list[dict[str, Any]]


_envelope_adapter = TypeAdapter(JSONExport)


# ---------------------------------------------------------------------------
# Node <-> plain dict
# ---------------------------------------------------------------------------


def node_to_dict(node: Node) -> dict[str, Any]:
    """Serialize a node with camelCase keys and ISO dates."""
    data: dict[str, Any] = {
        "id": node.id,
        "type": node.type,
        "title": node.title,
        "content": node.content,
        "tags": list(node.tags),
        "dates": {
            "created": to_iso(node.dates.created),
            "modified": to_iso(node.dates.modified),
        },
    }
    if node.type == "decision":
        data.update(
            status=node.status,
            selected=node.selected,
            selectedDate=to_iso(node.selected_date) if node.selected_date else None,
            rationale=node.rationale,
            options=[
                {
                    "id": o.id,
                    "name": o.name,
                    "values": dict(o.values),
                    **({"linkedNodeId": o.linked_node_id} if o.linked_node_id else {}),
                }
                for o in node.options
            ],
            criteria=[
                {
                    "id": c.id,
                    "name": c.name,
                    "weight": c.weight,
                    **({"unit": c.unit} if c.unit is not None else {}),
                }
                for c in node.criteria
            ],
        )
    elif node.type == "component":
        data.update(
            status=node.status,
            cost=node.cost,
            supplier=node.supplier,
            partNumber=node.part_number,
            customFields=dict(node.custom_fields),
        )
    elif node.type == "task":
        data.update(
            status=node.status,
            priority=node.priority,
            dependsOn=list(node.depends_on),
            blocks=list(node.blocks),
            checklist=[dataclasses.asdict(item) for item in node.checklist],
        )
        if node.milestone is not None:
            data["milestone"] = node.milestone
    elif node.type in ("subsystem", "assembly", "module"):
        data["status"] = node.status
        if node.requirements is not None:
            data["requirements"] = list(node.requirements)
    if hasattr(node, "parent"):
        data["parent"] = node.parent
    return data


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def export_to_json(
    project: Project,
    pretty_print: bool = True,
    include_metadata: bool = True,
    indent_spaces: int = 2,
) -> str:
    """Serialize a project, nodes sorted by (type, title) for stable diffs."""
    nodes = sorted(
        (node_to_dict(node) for node in project.nodes.values()),
        key=lambda n: (n["type"], n["title"].casefold(), n["id"]),
    )
    payload: dict[str, Any] = {}
    if include_metadata:
        payload["metadata"] = {
            "version": EXPORT_VERSION,
            "exportedAt": to_iso(now_utc()),
            "exportedBy": EXPORT_APP_NAME,
            "nodeCount": len(nodes),
        }
    payload["project"] = {
        "id": project.id,
        "name": project.name,
        **metadata_to_dict(project.metadata),
    }
    payload["nodes"] = nodes
    return json.dumps(payload, indent=indent_spaces if pretty_print else None, ensure_ascii=False)


def import_from_json(text: str) -> ValidationResult:
    """Rebuild a project from :func:`export_to_json` output.

    The import is all-or-nothing: every invalid node and every duplicate
    id is reported in one aggregate error and no project is returned.
    """
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        return validation_failure(ErrorCode.PARSE_ERROR, f"Invalid JSON: {exc}")

    try:
        envelope = _envelope_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        issues = [Issue(format_path(e["loc"]), e["msg"]) for e in exc.errors(include_url=False)]
        return validation_failure(ErrorCode.INVALID_VALUE, "Invalid export structure", issues=issues)

    project_data = envelope["project"]
    for key in ("createdAt", "modifiedAt"):
        if parse_date(project_data[key]) is None:
            return validation_failure(ErrorCode.INVALID_VALUE, f"Invalid project {key} date", path=f"project.{key}")

    nodes: dict[str, Node] = {}
    first_index: dict[str, int] = {}
    issues: list[Issue] = []
    for index, node_data in enumerate(envelope["nodes"]):
        result = validate_node(node_data)
        if not result.success:
            where = f"nodes[{index}]"
            if result.error.path:
                where = f"{where}.{result.error.path}"
            issues.append(Issue(where, result.error.message))
            continue
        node = result.data
        if node.id in nodes:
            issues.append(Issue(
                f"nodes[{index}].id",
                f"Duplicate node ID: {node.id} (nodes[{first_index[node.id]}] and nodes[{index}])",
            ))
            continue
        nodes[node.id] = node
        first_index[node.id] = index

    if issues:
        return validation_failure(ErrorCode.INVALID_VALUE, f"Failed to validate {len(issues)} node(s)", issues=issues)

    project = Project(
        id=project_data["id"],
        name=project_data["name"],
        path="",
        nodes=nodes,
        metadata=metadata_from_dict(project_data),
    )
    logger.info("Imported %d node(s) from JSON into %s", len(nodes), project.name)
    return ValidationResult(data=project)


# ---------------------------------------------------------------------------
# Markdown tree
# ---------------------------------------------------------------------------


@dataclass
class MarkdownFile:
    path: str
    content: str


@dataclass
class MarkdownExportResult:
    files: dict[str, str]
    project_json: str


@dataclass
class MarkdownImportResult:
    success: bool
    project: Project | None = None
    parse_errors: list[ParseIssue] = field(default_factory=list)
    error: str | None = None


def export_project_to_markdown(project: Project) -> MarkdownExportResult:
    """Render each node to ``{type_dir}/{id}.md`` plus a project.json string."""
    files = {
        f"{NODE_DIRECTORIES[node.type]}/{node.id}.md": serialize_node(node)
        for node in project.nodes.values()
    }
    project_json = json.dumps(
        {"id": project.id, **metadata_to_dict(project.metadata, name=project.name)},
        indent=2,
        ensure_ascii=False,
    )
    return MarkdownExportResult(files=files, project_json=project_json)


def detect_node_type_from_path(path: str) -> str | None:
    """Node type for the innermost recognised directory in ``path``."""
    directories = path.replace("\\", "/").lower().split("/")[:-1]
    for directory in reversed(directories):
        for node_type, name in NODE_DIRECTORIES.items():
            if directory == name:
                return node_type
    return None


def _as_files(files: Iterable[MarkdownFile] | Mapping[str, str]) -> list[MarkdownFile]:
    if isinstance(files, Mapping):
        return [MarkdownFile(path, content) for path, content in files.items()]
    return list(files)


def import_from_markdown(
    files: Iterable[MarkdownFile] | Mapping[str, str],
    project_name: str = "Imported Project",
    merge_mode: bool = False,
) -> MarkdownImportResult:
    """Build a project from a set of Markdown files laid out by type directory.

    On a duplicate id the later file is skipped in merge mode and replaces
    the earlier one otherwise; either way a parse issue is recorded.
    """
    files = _as_files(files)
    nodes: dict[str, Node] = {}
    parse_errors: list[ParseIssue] = []
    metadata: ProjectMetadata | None = None

    project_file = next(
        (f for f in files if posixpath.basename(f.path.replace("\\", "/")).lower() == PROJECT_FILE), None
    )
    if project_file is not None:
        try:
            data = parse_project_file(project_file.content)
        except ValueError as exc:
            parse_errors.append(ParseIssue(project_file.path, f"Failed to parse {PROJECT_FILE}: {exc}"))
        else:
            metadata = metadata_from_dict(data)
            if data.get("name"):
                project_name = data["name"]

    markdown_files = [f for f in files if f.path.lower().endswith(".md")]
    known = ", ".join(f"{d}/" for d in NODE_DIRECTORIES.values())
    for file in markdown_files:
        expected_type = detect_node_type_from_path(file.path)
        if expected_type is None:
            parse_errors.append(ParseIssue(file.path, f"File not in a recognized node directory ({known})"))
            continue

        parsed = parse_markdown(file.content)
        if parsed.error:
            parse_errors.append(ParseIssue(file.path, f"Failed to parse frontmatter: {parsed.error}"))
            continue

        result = validate_node(parsed.merged(get_node_id_from_path(file.path)))
        if not result.success:
            parse_errors.append(ParseIssue(file.path, result.error.message, validation_error=result.error))
            continue
        node = result.data

        if node.type != expected_type:
            parse_errors.append(ParseIssue(
                file.path,
                f"Node type mismatch: file in {NODE_DIRECTORIES[expected_type]}/ has type '{node.type}'",
            ))
        if node.id in nodes:
            if merge_mode:
                parse_errors.append(ParseIssue(file.path, f"Duplicate node ID '{node.id}' - skipping in merge mode"))
                continue
            parse_errors.append(ParseIssue(file.path, f"Duplicate node ID '{node.id}' - overwriting previous node"))
        nodes[node.id] = node

    if not nodes and markdown_files:
        return MarkdownImportResult(
            success=False,
            parse_errors=parse_errors,
            error="No valid nodes found in the imported files",
        )

    project = Project(
        id=slugify(project_name) or "imported-project",
        name=project_name,
        path="",
        nodes=nodes,
        metadata=metadata or ProjectMetadata(),
    )
    logger.info(
        "Imported %d node(s) from %d Markdown file(s) with %d issue(s)",
        len(nodes), len(markdown_files), len(parse_errors),
    )
    return MarkdownImportResult(success=True, project=project, parse_errors=parse_errors)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


@dataclass
class MergeResult:
    project: Project
    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    overwritten: list[str] = field(default_factory=list)
    renamed: dict[str, str] = field(default_factory=dict)


def _rewrite_references(node: Node, renamed: Mapping[str, str]) -> Node:
    changes: dict[str, Any] = {}
    if node.type == "task":
        changes["depends_on"] = [renamed.get(ref, ref) for ref in node.depends_on]
        changes["blocks"] = [renamed.get(ref, ref) for ref in node.blocks]
    if getattr(node, "parent", None) in renamed:
        changes["parent"] = renamed[node.parent]
    return dataclasses.replace(node, **changes) if changes else node


def merge_projects(
    target: Project,
    incoming: Project,
    conflict_resolution: ConflictResolution = "skip",
) -> MergeResult:
    """Merge ``incoming`` nodes into ``target`` in place.

    ``skip`` keeps the existing node, ``overwrite`` replaces it, and
    ``rename`` gives the incoming node a fresh id and rewrites references
    to it among the incoming nodes.
    """
    if conflict_resolution not in ("skip", "overwrite", "rename"):
        raise ValueError(f"Unknown conflict resolution: {conflict_resolution}")
    result = MergeResult(project=target)

    if conflict_resolution == "rename":
        taken = set(target.nodes) | set(incoming.nodes)
        for node_id in sorted(incoming.nodes):
            if node_id in target.nodes:
                new_id = generate_node_id(node_id, taken)
                taken.add(new_id)
                result.renamed[node_id] = new_id

    for node_id, node in incoming.nodes.items():
        if node_id in target.nodes and conflict_resolution == "skip":
            result.skipped.append(node_id)
            continue
        node = _rewrite_references(node, result.renamed)
        if node_id in result.renamed:
            node = dataclasses.replace(node, id=result.renamed[node_id])
            result.added.append(node.id)
        elif node_id in target.nodes:
            result.overwritten.append(node_id)
        else:
            result.added.append(node_id)
        target.nodes[node.id] = node

    if result.added or result.overwritten:
        target.touch()
    logger.info(
        "Merged %s into %s: %d added, %d overwritten, %d skipped, %d renamed",
        incoming.name, target.name, len(result.added), len(result.overwritten),
        len(result.skipped), len(result.renamed),
    )
    return result


def generate_export_filename(project_name: str, fmt: str) -> str:
    """``{slug}-{YYYY-MM-DD}.{ext}`` for json, markdown (zip) or csv exports."""
    extensions = {"json": "json", "markdown": "zip", "csv": "csv"}
    if fmt not in extensions:
        raise ValueError(f"Unsupported export format: {fmt}")
    stamp = now_utc().date().isoformat()
    return f"{slugify(project_name) or 'project'}-{stamp}.{extensions[fmt]}"
