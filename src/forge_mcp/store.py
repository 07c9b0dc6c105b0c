"""Directory-backed project store: one Markdown file per node."""

from __future__ import annotations

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Optional, TypedDict

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .filesystem import FileSystemAdapter, LocalFileSystemAdapter, join_path
from .markdown_parser import parse_markdown, serialize_node
from .models import NODE_TYPES, Node, Project, ProjectMetadata
from .utils import now_utc, parse_date, slugify, to_iso
from .validation import DateLike, validate_node

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.json"

NODE_DIRECTORIES: dict[str, str] = {
    "decision": "decisions",
    "component": "components",
    "task": "tasks",
    "note": "notes",
    "subsystem": "subsystems",
    "assembly": "assemblies",
    "module": "modules",
}


class ProjectFile(TypedDict, total=False):
    """Shape of ``project.json``."""
    name: str
    createdAt: DateLike
    modifiedAt: DateLike
    description: Optional[str]
    nodeOrder: Optional[list[str]]
    nodePositions: Optional[dict[str, dict[str, float]]]


_project_file_adapter = TypeAdapter(ProjectFile)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ParseIssue:
    """A non-fatal problem with one file or node."""
    path: str
    message: str
    validation_error: ValidationError | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "message": self.message}
        if self.validation_error is not None:
            data["validation_error"] = self.validation_error.to_dict()
        return data


@dataclass
class LoadProjectResult:
    project: Project | None = None
    parse_errors: list[ParseIssue] = field(default_factory=list)
    error: str | None = None


@dataclass
class SaveNodeResult:
    success: bool
    path: str | None = None
    error: str | None = None


@dataclass
class DeleteNodeResult:
    success: bool
    path: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def get_directory_for_node_type(node_type: str) -> str:
    return NODE_DIRECTORIES[node_type]


def get_node_type_for_directory(directory: str) -> str | None:
    for node_type, name in NODE_DIRECTORIES.items():
        if name == directory:
            return node_type
    return None


def get_node_file_path(project_path: str, node: Node) -> str:
    return join_path(project_path, get_directory_for_node_type(node.type), f"{node.id}.md")


def get_node_id_from_path(file_path: str) -> str:
    name = posixpath.basename(file_path.replace("\\", "/"))
    return name[:-3] if name.endswith(".md") else name


# ---------------------------------------------------------------------------
# project.json
# ---------------------------------------------------------------------------


def metadata_to_dict(metadata: ProjectMetadata, name: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if name:
        data["name"] = name
    data["createdAt"] = to_iso(metadata.created_at)
    data["modifiedAt"] = to_iso(metadata.modified_at)
    if metadata.description is not None:
        data["description"] = metadata.description
    if metadata.node_order is not None:
        data["nodeOrder"] = list(metadata.node_order)
    if metadata.node_positions is not None:
        data["nodePositions"] = {k: dict(v) for k, v in metadata.node_positions.items()}
    return data


def parse_project_file(text: str) -> ProjectFile:
    """Parse and shape-check project.json.

    Raises ValueError (json.JSONDecodeError or pydantic's ValidationError).
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("project.json must contain a JSON object")
    return _project_file_adapter.validate_python(data)


def metadata_from_dict(data: ProjectFile) -> ProjectMetadata:
    """Build metadata; missing or unparseable timestamps become now."""
    now = now_utc()
    return ProjectMetadata(
        created_at=parse_date(data.get("createdAt")) or now,
        modified_at=parse_date(data.get("modifiedAt")) or now,
        description=data.get("description"),
        node_order=data.get("nodeOrder"),
        node_positions=data.get("nodePositions"),
    )


def _project_name_from_path(project_path: str) -> str:
    normalized = project_path.replace("\\", "/").rstrip("/")
    return posixpath.basename(normalized) or "Untitled Project"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ProjectStore:
    """Load and persist projects through a file-system adapter.

    Per-file problems never abort a load; they are collected as
    ``ParseIssue``s next to the partially loaded project.
    """

    def __init__(self, adapter: FileSystemAdapter | None = None):
        self.adapter = adapter or LocalFileSystemAdapter()

    def load_node(self, file_path: str) -> tuple[Node | None, ParseIssue | None]:
        """Read, parse and validate one node file. The filename is the id."""
        try:
            text = self.adapter.read_file(file_path)
        except (OSError, UnicodeDecodeError) as exc:
            return None, ParseIssue(file_path, f"Failed to read file: {exc}")

        parsed = parse_markdown(text)
        if parsed.error:
            return None, ParseIssue(file_path, f"Failed to parse frontmatter: {parsed.error}")

        result = validate_node(parsed.merged(get_node_id_from_path(file_path)))
        if not result.success:
            return None, ParseIssue(file_path, result.error.message, validation_error=result.error)
        return result.data, None

    def load(self, project_path: str) -> LoadProjectResult:
        """Load every node file below ``project_path``."""
        if not self.adapter.exists(project_path):
            return LoadProjectResult(error=f"Project directory not found: {project_path}")

        parse_errors: list[ParseIssue] = []
        nodes: dict[str, Node] = {}
        try:
            for node_type, directory in NODE_DIRECTORIES.items():
                dir_path = join_path(project_path, directory)
                if not self.adapter.exists(dir_path):
                    continue
                for entry in self.adapter.list_directory(dir_path, extension=".md"):
                    if entry.is_directory:
                        continue
                    node, issue = self.load_node(entry.path)
                    if issue is not None:
                        parse_errors.append(issue)
                        continue
                    logger.debug("Loaded %s node %s", node.type, node.id)
                    if node.type != node_type:
                        parse_errors.append(ParseIssue(
                            entry.path,
                            f"Node type mismatch: file in {directory}/ has type '{node.type}'",
                        ))
                    if node.id in nodes:
                        parse_errors.append(ParseIssue(
                            entry.path,
                            f"Duplicate node id '{node.id}' replaces an earlier {nodes[node.id].type}",
                        ))
                    nodes[node.id] = node

            metadata = ProjectMetadata()
            metadata_path = join_path(project_path, PROJECT_FILE)
            if self.adapter.exists(metadata_path):
                try:
                    metadata = metadata_from_dict(parse_project_file(self.adapter.read_file(metadata_path)))
                except (ValueError, PydanticValidationError) as exc:
                    parse_errors.append(ParseIssue(
                        metadata_path,
                        f"Failed to parse {PROJECT_FILE}: {exc}. Using defaults.",
                    ))
        except OSError as exc:
            logger.error("Failed to load project %s: %s", project_path, exc)
            return LoadProjectResult(parse_errors=parse_errors, error=str(exc))

        name = _project_name_from_path(project_path)
        project = Project(
            id=slugify(name) or "project",
            name=name,
            path=project_path,
            nodes=nodes,
            metadata=metadata,
        )
        for issue in parse_errors:
            logger.warning("%s: %s", issue.path, issue.message)
        return LoadProjectResult(project=project, parse_errors=parse_errors)

    def save_node(self, project_path: str, node: Node) -> SaveNodeResult:
        """Write ``node`` to its file, overwriting whatever is there."""
        file_path = get_node_file_path(project_path, node)
        try:
            dir_path = join_path(project_path, get_directory_for_node_type(node.type))
            if not self.adapter.exists(dir_path):
                self.adapter.mkdir(dir_path)
            self.adapter.write_file(file_path, serialize_node(node))
        except OSError as exc:
            logger.error("Failed to save %s: %s", file_path, exc)
            return SaveNodeResult(success=False, error=str(exc))
        return SaveNodeResult(success=True, path=file_path)

    def delete_node(self, project_path: str, node: Node) -> DeleteNodeResult:
        """Remove the node's file. A file that is already gone counts as success."""
        file_path = get_node_file_path(project_path, node)
        try:
            if self.adapter.exists(file_path):
                self.adapter.delete(file_path)
        except OSError as exc:
            logger.error("Failed to delete %s: %s", file_path, exc)
            return DeleteNodeResult(success=False, path=file_path, error=str(exc))
        return DeleteNodeResult(success=True, path=file_path)

    def save_metadata(self, project_path: str, metadata: ProjectMetadata, name: str | None = None) -> SaveNodeResult:
        """Write ``project.json``. The result's path points at that file."""
        file_path = join_path(project_path, PROJECT_FILE)
        try:
            self.adapter.write_file(file_path, json.dumps(metadata_to_dict(metadata, name), indent=2))
        except OSError as exc:
            logger.error("Failed to save %s: %s", file_path, exc)
            return SaveNodeResult(success=False, error=str(exc))
        return SaveNodeResult(success=True, path=file_path)

    def save_project(self, project: Project) -> list[SaveNodeResult]:
        """Save every node plus metadata to ``project.path``. Returns failures only."""
        results = [self.save_node(project.path, node) for node in project.nodes.values()]
        results.append(self.save_metadata(project.path, project.metadata, name=project.name))
        return [result for result in results if not result.success]

    def initialize(self, project_path: str, name: str | None = None, description: str | None = None) -> Project:
        """Create the directory skeleton and ``project.json`` for a new project.

        Raises OSError if the directories cannot be created.
        """
        self.adapter.mkdir(project_path)
        for node_type in NODE_TYPES:
            self.adapter.mkdir(join_path(project_path, NODE_DIRECTORIES[node_type]))

        name = name or _project_name_from_path(project_path)
        metadata = ProjectMetadata(description=description)
        metadata.modified_at = metadata.created_at
        result = self.save_metadata(project_path, metadata, name=name)
        if not result.success:
            raise OSError(result.error)
        logger.info("Initialized project %s at %s", name, project_path)
        return Project(id=slugify(name) or "project", name=name, path=project_path, metadata=metadata)
