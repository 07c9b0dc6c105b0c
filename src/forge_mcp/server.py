"""FastMCP server exposing forge project tools."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import Settings, settings
from .csv_export import export_bom, export_components_to_csv
from .exceptions import CycleError
from .exchange import (
    export_project_to_markdown,
    export_to_json,
    import_from_json,
    merge_projects,
    node_to_dict,
)
from .filesystem import LocalFileSystemAdapter
from .graph import (
    find_cycle,
    get_blocked_tasks,
    get_critical_path,
    get_dependencies,
    get_dependents,
    get_would_unblock,
    would_create_cycle,
)
from .logger_config import setup_logging
from .markdown_parser import extract_wiki_links
from .models import Node, NodeDates, Project, is_container
from .store import PROJECT_FILE, LoadProjectResult, ProjectStore
from .utils import generate_node_id, now_utc
from .validation import validate_node

mcp = FastMCP("forge")

_store: ProjectStore | None = None
_settings: Settings = settings


def _get_store() -> ProjectStore:
    global _store
    if _store is None:
        _store = ProjectStore(LocalFileSystemAdapter())
    return _store


def _project_path(project: str | None) -> str:
    return str(_settings.path_for(project or _settings.project_name))


def _load(project: str | None) -> LoadProjectResult:
    return _get_store().load(_project_path(project))


def _error(message: str, **extra: Any) -> str:
    return json.dumps({"error": message, **extra})


def _summary(node: Node) -> dict[str, Any]:
    data = {"id": node.id, "type": node.type, "title": node.title}
    if hasattr(node, "status"):
        data["status"] = node.status
    return data


def _write_text(path: str, text: str) -> str:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8", newline="")
    return str(target)


def _check_parent(project: Project, node: Node) -> str | None:
    parent = getattr(node, "parent", None)
    if parent is None:
        return None
    target = project.nodes.get(parent)
    if target is None or not is_container(target):
        return f"Parent '{parent}' is not a container node in this project"
    if parent == node.id:
        return "A node cannot be its own parent"
    return None


def _save(project: Project, node: Node) -> str | None:
    result = _get_store().save_node(project.path, node)
    return None if result.success else result.error


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------
@mcp.tool()
def forge_list_projects() -> str:
    """
    List project folders in the workspace.

    Returns:
        str: JSON with the workspace path, active project and project names
    """
    workspace = _settings.workspace_dir
    names = []
    if workspace.is_dir():
        names = sorted(p.name for p in workspace.iterdir() if p.is_dir() and (p / PROJECT_FILE).exists())
    return json.dumps({
        "workspace": str(workspace),
        "active": _settings.project_name,
        "projects": names,
    })


@mcp.tool()
def forge_init_project(name: str, description: str | None = None) -> str:
    """
    Create a new project folder with one directory per node type.

    Args:
        name: Project folder name inside the workspace
        description: Optional project description

    Returns:
        str: JSON with the new project's id, name and path
    """
    path = _project_path(name)
    if (Path(path) / PROJECT_FILE).exists():
        return _error(f"Project already exists: {name}", path=path)
    _settings.ensure_workspace()
    try:
        project = _get_store().initialize(path, name=name, description=description)
    except OSError as exc:
        return _error(f"Failed to initialize project: {exc}", path=path)
    return json.dumps({"id": project.id, "name": project.name, "path": project.path})


@mcp.tool()
def forge_project_status(project: str | None = None) -> str:
    """
    Summarise a project: node counts, blocked tasks, critical path, load issues.

    Args:
        project: Project name (defaults to the active project)

    Returns:
        str: JSON status report
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    try:
        critical = [task.id for task in get_critical_path(proj)]
        cycle = None
    except CycleError as exc:
        critical = []
        cycle = exc.cycle
    return json.dumps({
        "id": proj.id,
        "name": proj.name,
        "path": proj.path,
        "description": proj.metadata.description,
        "node_counts": proj.node_counts(),
        "blocked_tasks": [task.id for task in get_blocked_tasks(proj)],
        "critical_path": critical,
        "cycle": cycle,
        "parse_errors": [issue.to_dict() for issue in loaded.parse_errors],
    })


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------
@mcp.tool()
def forge_get_node(node_id: str, project: str | None = None) -> str:
    """
    Fetch one node with its direct dependency links and wiki-links.

    Args:
        node_id: Node id (the file name without .md)
        project: Project name (defaults to the active project)

    Returns:
        str: JSON node, or an error if it does not exist
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    node = loaded.project.nodes.get(node_id)
    if node is None:
        return _error(f"Node not found: {node_id}")
    data = node_to_dict(node)
    data["wiki_links"] = extract_wiki_links(node.content)
    data["dependencies"] = [_summary(dep) for dep in get_dependencies(loaded.project, node_id)]
    data["dependents"] = [_summary(dep) for dep in get_dependents(loaded.project, node_id)]
    return json.dumps(data)


@mcp.tool()
def forge_create_node(
    node_type: str,
    title: str,
    node_id: str | None = None,
    content: str = "",
    tags: list[str] | None = None,
    fields: dict[str, Any] | None = None,
    project: str | None = None,
) -> str:
    """
    Create a node and write it to the project.

    Args:
        node_type: One of decision, component, task, note, subsystem, assembly, module
        title: Node title
        node_id: Optional id; generated from the title when omitted
        content: Markdown body
        tags: List of tag strings
        fields: Type-specific fields, e.g. {"status": "in_progress", "dependsOn": ["x"]}
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the created node
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    if node_id and node_id in proj.nodes:
        return _error(f"Node already exists: {node_id}")

    raw = {
        **(fields or {}),
        "type": node_type,
        "id": node_id or generate_node_id(title, proj.nodes),
        "title": title,
        "content": content,
        "tags": tags or [],
    }
    result = validate_node(raw)
    if not result.success:
        return json.dumps({"error": result.error.message, **result.error.to_dict()})
    node = result.data

    problem = _check_parent(proj, node)
    if problem is None and node.type == "task":
        for dep in node.depends_on:
            if dep == node.id:
                problem = "A task cannot depend on itself"
            elif dep not in proj.nodes:
                problem = f"Dependency not found: {dep}"
    if problem:
        return _error(problem)

    failure = _save(proj, node)
    if failure:
        return _error(failure)
    return json.dumps(node_to_dict(node))


@mcp.tool()
def forge_update_node(
    node_id: str,
    title: str | None = None,
    content: str | None = None,
    tags: list[str] | None = None,
    fields: dict[str, Any] | None = None,
    project: str | None = None,
) -> str:
    """
    Update fields of an existing node. The node's type cannot change.

    Args:
        node_id: Id of the node to update
        title: New title
        content: New Markdown body
        tags: Replacement tag list
        fields: Type-specific fields to set, e.g. {"status": "complete"}
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the updated node
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    existing = proj.nodes.get(node_id)
    if existing is None:
        return _error(f"Node not found: {node_id}")
    fields = dict(fields or {})
    if fields.get("type", existing.type) != existing.type:
        return _error("Node type cannot be changed")
    if fields.get("id", node_id) != node_id:
        return _error("Node id cannot be changed")

    raw = node_to_dict(existing)
    raw.update(fields)
    if title is not None:
        raw["title"] = title
    if content is not None:
        raw["content"] = content
    if tags is not None:
        raw["tags"] = tags
    raw["dates"] = {"created": existing.dates.created, "modified": now_utc()}

    result = validate_node(raw)
    if not result.success:
        return json.dumps({"error": result.error.message, **result.error.to_dict()})
    node = result.data

    problem = _check_parent(proj, node)
    if problem:
        return _error(problem)
    proj.nodes[node_id] = node
    if node.type == "task":
        cycle = find_cycle(proj)
        if cycle:
            return _error("Update would create a dependency cycle", cycle=cycle)

    failure = _save(proj, node)
    if failure:
        return _error(failure)
    return json.dumps(node_to_dict(node))


@mcp.tool()
def forge_delete_node(node_id: str, project: str | None = None) -> str:
    """
    Delete a node file and drop references to it from other tasks.

    Args:
        node_id: Id of the node to delete
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with deletion status and the ids of tasks that were updated
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    node = proj.nodes.pop(node_id, None)
    if node is None:
        return json.dumps({"deleted": False, "message": f"No node found with id '{node_id}'"})
    result = _get_store().delete_node(proj.path, node)
    if not result.success:
        return _error(result.error)

    updated = []
    for task in proj.tasks():
        if node_id in task.depends_on or node_id in task.blocks:
            task.depends_on = [d for d in task.depends_on if d != node_id]
            task.blocks = [b for b in task.blocks if b != node_id]
            task.dates = NodeDates(task.dates.created, now_utc())
            _save(proj, task)
            updated.append(task.id)
    return json.dumps({"deleted": True, "id": node_id, "updated": updated})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
@mcp.tool()
def forge_add_dependency(task_id: str, depends_on_id: str, project: str | None = None) -> str:
    """
    Make a task depend on another node. Rejected if it would create a cycle.

    Args:
        task_id: The dependent task
        depends_on_id: The node it should depend on
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the task's updated dependency list
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    task = proj.nodes.get(task_id)
    if task is None or task.type != "task":
        return _error(f"Task not found: {task_id}")
    if depends_on_id not in proj.nodes:
        return _error(f"Node not found: {depends_on_id}")
    if depends_on_id in task.depends_on:
        return json.dumps({"id": task_id, "depends_on": task.depends_on, "added": False})
    if would_create_cycle(proj, task_id, depends_on_id):
        return _error(f"Adding {task_id} -> {depends_on_id} would create a dependency cycle")

    task.depends_on.append(depends_on_id)
    task.dates = NodeDates(task.dates.created, now_utc())
    failure = _save(proj, task)
    if failure:
        return _error(failure)
    return json.dumps({"id": task_id, "depends_on": task.depends_on, "added": True})


@mcp.tool()
def forge_remove_dependency(task_id: str, depends_on_id: str, project: str | None = None) -> str:
    """
    Remove a dependency edge from a task.

    Args:
        task_id: The dependent task
        depends_on_id: The dependency to remove
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the task's updated dependency list
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    task = loaded.project.nodes.get(task_id)
    if task is None or task.type != "task":
        return _error(f"Task not found: {task_id}")
    if depends_on_id not in task.depends_on:
        return json.dumps({"id": task_id, "depends_on": task.depends_on, "removed": False})

    task.depends_on = [d for d in task.depends_on if d != depends_on_id]
    task.dates = NodeDates(task.dates.created, now_utc())
    failure = _save(loaded.project, task)
    if failure:
        return _error(failure)
    return json.dumps({"id": task_id, "depends_on": task.depends_on, "removed": True})


@mcp.tool()
def forge_get_blocked_tasks(project: str | None = None) -> str:
    """
    List incomplete tasks waiting on incomplete task dependencies.

    Args:
        project: Project name (defaults to the active project)

    Returns:
        str: JSON array of blocked tasks with the ids blocking each one
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    proj = loaded.project
    blocked = []
    for task in get_blocked_tasks(proj):
        blocking = [
            dep for dep in task.depends_on
            if dep in proj.nodes and proj.nodes[dep].type == "task" and proj.nodes[dep].status != "complete"
        ]
        blocked.append({**_summary(task), "blocked_by": blocking})
    return json.dumps(blocked)


@mcp.tool()
def forge_get_critical_path(project: str | None = None) -> str:
    """
    Longest chain of incomplete tasks, from the final task back to the first.

    Args:
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the ordered tasks, or an error naming a cycle
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    try:
        path = get_critical_path(loaded.project)
    except CycleError as exc:
        return _error(exc.message, cycle=exc.cycle)
    unblocks = {task.id: [t.id for t in get_would_unblock(loaded.project, task.id)] for task in path}
    return json.dumps({
        "length": len(path),
        "tasks": [{**_summary(task), "would_unblock": unblocks[task.id]} for task in path],
    })


# ---------------------------------------------------------------------------
# Exchange
# ---------------------------------------------------------------------------
@mcp.tool()
def forge_export_json(path: str | None = None, pretty_print: bool = True, project: str | None = None) -> str:
    """
    Export the whole project as JSON.

    Args:
        path: Optional file path to write; the JSON is returned inline when omitted
        pretty_print: Indent the output
        project: Project name (defaults to the active project)

    Returns:
        str: The JSON export, or JSON with the written path
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    data = export_to_json(loaded.project, pretty_print=pretty_print)
    if path is None:
        return data
    return json.dumps({"path": _write_text(path, data), "node_count": len(loaded.project.nodes)})


@mcp.tool()
def forge_import_json(
    data: str | None = None,
    path: str | None = None,
    conflict_resolution: str = "skip",
    project: str | None = None,
) -> str:
    """
    Import a JSON export into the project.

    Args:
        data: JSON text to import
        path: File to read instead of ``data``
        conflict_resolution: skip, overwrite or rename when ids collide
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with added, overwritten, skipped and renamed ids
    """
    if conflict_resolution not in ("skip", "overwrite", "rename"):
        return _error(f"Unknown conflict resolution: {conflict_resolution}")
    if data is None:
        if path is None:
            return _error("Provide either data or path")
        try:
            data = Path(path).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            return _error(f"Failed to read {path}: {exc}")

    imported = import_from_json(data)
    if not imported.success:
        return json.dumps({"error": imported.error.message, **imported.error.to_dict()})

    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    merged = merge_projects(loaded.project, imported.data, conflict_resolution)
    written = set(merged.added) | set(merged.overwritten)
    for node_id in sorted(written):
        failure = _save(merged.project, merged.project.nodes[node_id])
        if failure:
            return _error(failure, node_id=node_id)
    _get_store().save_metadata(merged.project.path, merged.project.metadata, name=merged.project.name)
    return json.dumps({
        "added": merged.added,
        "overwritten": merged.overwritten,
        "skipped": merged.skipped,
        "renamed": merged.renamed,
    })


@mcp.tool()
def forge_export_markdown(output_dir: str, project: str | None = None) -> str:
    """
    Write the project as a Markdown file tree (one folder per node type).

    Args:
        output_dir: Directory to write into
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the list of files written
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    export = export_project_to_markdown(loaded.project)
    root = Path(output_dir).expanduser()
    written = [_write_text(str(root / rel), content) for rel, content in sorted(export.files.items())]
    written.append(_write_text(str(root / PROJECT_FILE), export.project_json))
    return json.dumps({"output_dir": str(root), "files": written})


@mcp.tool()
def forge_export_components_csv(
    path: str | None = None,
    fields: list[str] | None = None,
    include_bom: bool = True,
    project: str | None = None,
) -> str:
    """
    Export component nodes as CSV.

    Args:
        path: Optional file path to write; the CSV is returned inline when omitted
        fields: Columns to include (id, title, status, cost, supplier, partNumber,
                tags, customFields, created, modified)
        include_bom: Prefix a UTF-8 byte order mark for spreadsheet apps
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with the CSV text or the written path
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    result = export_components_to_csv(loaded.project.nodes, fields=fields, include_bom=include_bom)
    payload: dict[str, Any] = {"component_count": result.component_count, "filename": result.filename}
    if path is None:
        payload["csv"] = result.data
    else:
        payload["path"] = _write_text(path, result.data)
    return json.dumps(payload)


@mcp.tool()
def forge_export_bom(path: str | None = None, project: str | None = None) -> str:
    """
    Export the bill of materials grouped by part number.

    Args:
        path: Optional file path to write; the CSV is returned inline when omitted
        project: Project name (defaults to the active project)

    Returns:
        str: JSON with line items, totals and either the CSV text or the written path
    """
    loaded = _load(project)
    if loaded.project is None:
        return _error(loaded.error)
    result = export_bom(loaded.project)
    payload: dict[str, Any] = {
        "line_items": [dataclasses.asdict(item) for item in result.line_items],
        "total_cost": round(result.total_cost, 2),
        "unknown_cost_count": result.unknown_cost_count,
        "filename": result.filename,
    }
    if path is None:
        payload["csv"] = result.data
    else:
        payload["path"] = _write_text(path, result.data)
    return json.dumps(payload)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main():
    setup_logging(_settings.log_level)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
