"""Tests for MCP tool functions."""

import json
import textwrap

import pytest

from forge_mcp.config import Settings
from forge_mcp.filesystem import LocalFileSystemAdapter
from forge_mcp.store import ProjectStore
import forge_mcp.server as srv


@pytest.fixture(autouse=True)
def temp_workspace(tmp_path):
    """Point the server at a fresh workspace with an initialized 'rover' project."""
    srv._settings = Settings(workspace_dir=tmp_path / "workspace", project_name="rover", log_level="WARNING")
    srv._store = ProjectStore(LocalFileSystemAdapter())
    json.loads(srv.forge_init_project("rover", description="Six-wheel rover"))
    yield tmp_path / "workspace" / "rover"
    srv._store = None
    srv._settings = srv.settings


def _create(node_type, title, **kwargs):
    return json.loads(srv.forge_create_node(node_type, title, **kwargs))


class TestProjects:
    def test_list_projects(self):
        json.loads(srv.forge_init_project("lamp"))
        result = json.loads(srv.forge_list_projects())
        assert result["projects"] == ["lamp", "rover"]
        assert result["active"] == "rover"

    def test_init_existing_project(self):
        result = json.loads(srv.forge_init_project("rover"))
        assert "already exists" in result["error"]

    def test_status(self):
        _create("task", "Order parts")
        _create("task", "Assemble", fields={"dependsOn": ["order-parts"]})
        _create("component", "Motor")
        status = json.loads(srv.forge_project_status())
        assert status["name"] == "rover"
        assert status["description"] == "Six-wheel rover"
        assert status["node_counts"]["task"] == 2
        assert status["node_counts"]["component"] == 1
        assert status["blocked_tasks"] == ["assemble"]
        assert status["critical_path"] == ["assemble", "order-parts"]
        assert status["cycle"] is None

    def test_missing_project(self):
        result = json.loads(srv.forge_project_status(project="nope"))
        assert "not found" in result["error"]

    def test_status_reports_parse_errors(self, temp_workspace):
        (temp_workspace / "tasks" / "broken.md").write_text("---\ntype: [task\n---\n", encoding="utf-8")
        status = json.loads(srv.forge_project_status())
        assert len(status["parse_errors"]) == 1
        assert status["parse_errors"][0]["path"].endswith("broken.md")


class TestNodes:
    def test_create_writes_file(self, temp_workspace):
        result = _create("note", "Wiring Plan", content="See [[motor]].", tags=["power"])
        assert result["id"] == "wiring-plan"
        text = (temp_workspace / "notes" / "wiring-plan.md").read_text(encoding="utf-8")
        assert text.startswith("---\ntype: note\n")
        assert "# Wiring Plan" in text

    def test_create_generates_unique_ids(self):
        assert _create("note", "Log")["id"] == "log"
        assert _create("note", "Log")["id"] == "log-2"

    def test_create_rejects_explicit_duplicate(self):
        _create("note", "Log")
        assert "already exists" in _create("note", "Other", node_id="log")["error"]

    def test_create_validation_error(self):
        result = _create("task", "Bad", fields={"status": "done"})
        assert result["code"] == "INVALID_VALUE"
        assert result["path"] == "status"

    def test_create_invalid_type(self):
        result = _create("widget", "Bad")
        assert result["path"] == "type"

    def test_create_missing_dependency(self):
        result = _create("task", "Wire", fields={"dependsOn": ["ghost"]})
        assert result["error"] == "Dependency not found: ghost"

    def test_parent_must_be_container(self):
        _create("note", "Log")
        assert "not a container" in _create("component", "Motor", fields={"parent": "log"})["error"]
        _create("subsystem", "Drivetrain")
        assert _create("component", "Motor", fields={"parent": "drivetrain"})["parent"] == "drivetrain"

    def test_get_node(self):
        _create("task", "Order parts")
        _create("task", "Assemble", content="Use [[order-parts]]", fields={"dependsOn": ["order-parts"]})
        node = json.loads(srv.forge_get_node("assemble"))
        assert node["wiki_links"] == ["order-parts"]
        assert node["dependencies"] == [
            {"id": "order-parts", "type": "task", "title": "Order parts", "status": "pending"}
        ]
        dependency = json.loads(srv.forge_get_node("order-parts"))
        assert [d["id"] for d in dependency["dependents"]] == ["assemble"]

    def test_get_missing_node(self):
        assert "not found" in json.loads(srv.forge_get_node("ghost"))["error"]

    def test_update(self):
        created = _create("component", "Motor")
        updated = json.loads(srv.forge_update_node(
            "motor", tags=["drive"], fields={"status": "selected", "cost": 12.5}
        ))
        assert updated["status"] == "selected"
        assert updated["cost"] == 12.5
        assert updated["tags"] == ["drive"]
        assert updated["dates"]["created"] == created["dates"]["created"]
        reloaded = json.loads(srv.forge_get_node("motor"))
        assert reloaded["cost"] == 12.5

    def test_update_cannot_change_type(self):
        _create("note", "Log")
        result = json.loads(srv.forge_update_node("log", fields={"type": "task"}))
        assert result["error"] == "Node type cannot be changed"

    def test_update_rejects_cycle(self):
        _create("task", "A")
        _create("task", "B", fields={"dependsOn": ["a"]})
        result = json.loads(srv.forge_update_node("a", fields={"dependsOn": ["b"]}))
        assert "cycle" in result["error"]
        assert json.loads(srv.forge_get_node("a"))["dependsOn"] == []

    def test_delete_strips_references(self, temp_workspace):
        _create("task", "A")
        _create("task", "B", fields={"dependsOn": ["a"], "blocks": ["a"]})
        result = json.loads(srv.forge_delete_node("a"))
        assert result == {"deleted": True, "id": "a", "updated": ["b"]}
        assert not (temp_workspace / "tasks" / "a.md").exists()
        node = json.loads(srv.forge_get_node("b"))
        assert node["dependsOn"] == []
        assert node["blocks"] == []

    def test_delete_missing(self):
        assert json.loads(srv.forge_delete_node("ghost"))["deleted"] is False


class TestDependencies:
    def test_add_and_remove(self):
        _create("task", "A")
        _create("task", "B")
        added = json.loads(srv.forge_add_dependency("b", "a"))
        assert added == {"id": "b", "depends_on": ["a"], "added": True}
        again = json.loads(srv.forge_add_dependency("b", "a"))
        assert again["added"] is False
        removed = json.loads(srv.forge_remove_dependency("b", "a"))
        assert removed == {"id": "b", "depends_on": [], "removed": True}

    def test_add_rejects_cycle(self):
        _create("task", "A")
        _create("task", "B", fields={"dependsOn": ["a"]})
        _create("task", "C", fields={"dependsOn": ["b"]})
        result = json.loads(srv.forge_add_dependency("a", "c"))
        assert "cycle" in result["error"]
        assert "self" not in result["error"]
        assert "cycle" in json.loads(srv.forge_add_dependency("a", "a"))["error"]

    def test_add_requires_task(self):
        _create("note", "Log")
        assert "Task not found" in json.loads(srv.forge_add_dependency("log", "log"))["error"]

    def test_blocked_tasks(self):
        _create("task", "A")
        _create("task", "B", fields={"status": "complete"})
        _create("task", "C", fields={"dependsOn": ["a", "b"]})
        blocked = json.loads(srv.forge_get_blocked_tasks())
        assert blocked == [
            {"id": "c", "type": "task", "title": "C", "status": "pending", "blocked_by": ["a"]}
        ]

    def test_critical_path(self):
        _create("task", "A")
        _create("task", "B", fields={"dependsOn": ["a"]})
        _create("task", "C", fields={"dependsOn": ["b"]})
        result = json.loads(srv.forge_get_critical_path())
        assert result["length"] == 3
        assert [t["id"] for t in result["tasks"]] == ["c", "b", "a"]
        assert result["tasks"][2]["would_unblock"] == ["b"]

    def test_critical_path_cycle(self, temp_workspace):
        for name, dep in (("a", "b"), ("b", "a")):
            (temp_workspace / "tasks" / f"{name}.md").write_text(textwrap.dedent(f"""\
                ---
                type: task
                depends_on:
                  - {dep}
                ---

                # {name.upper()}
            """), encoding="utf-8")
        result = json.loads(srv.forge_get_critical_path())
        assert "cycle" in result["error"]
        assert set(result["cycle"]) == {"a", "b"}


class TestExchange:
    def test_export_json_inline(self):
        _create("note", "Log")
        data = json.loads(srv.forge_export_json())
        assert data["metadata"]["nodeCount"] == 1
        assert data["project"]["description"] == "Six-wheel rover"

    def test_export_then_import_into_other_project(self, tmp_path):
        _create("task", "A")
        _create("task", "B", fields={"dependsOn": ["a"]})
        out = tmp_path / "rover.json"
        written = json.loads(srv.forge_export_json(path=str(out)))
        assert written["node_count"] == 2

        json.loads(srv.forge_init_project("copy"))
        result = json.loads(srv.forge_import_json(path=str(out), project="copy"))
        assert sorted(result["added"]) == ["a", "b"]
        node = json.loads(srv.forge_get_node("b", project="copy"))
        assert node["dependsOn"] == ["a"]

    def test_import_rename_conflicts(self):
        _create("task", "A", content="original")
        exported = srv.forge_export_json()
        result = json.loads(srv.forge_import_json(data=exported, conflict_resolution="rename"))
        assert result["renamed"] == {"a": "a-2"}
        assert json.loads(srv.forge_get_node("a-2"))["content"] == "original"

    def test_import_invalid(self):
        result = json.loads(srv.forge_import_json(data="not json"))
        assert result["code"] == "PARSE_ERROR"
        assert "Provide either" in json.loads(srv.forge_import_json())["error"]

    def test_export_markdown(self, tmp_path):
        _create("component", "Motor")
        result = json.loads(srv.forge_export_markdown(str(tmp_path / "out")))
        assert (tmp_path / "out" / "components" / "motor.md").exists()
        assert (tmp_path / "out" / "project.json").exists()
        assert len(result["files"]) == 2

    def test_export_components_csv(self, tmp_path):
        _create("component", 'Resistor, 10kΩ "precision"', node_id="r1")
        result = json.loads(srv.forge_export_components_csv(fields=["title"], include_bom=False))
        assert result["csv"] == 'Title\r\n"Resistor, 10kΩ ""precision"""'
        out = tmp_path / "parts.csv"
        srv.forge_export_components_csv(path=str(out))
        assert out.read_bytes().startswith("\ufeff".encode("utf-8"))
        assert b"\r\n" in out.read_bytes()

    def test_export_bom(self):
        _create("component", "Resistor", node_id="r1", fields={"partNumber": "R-100", "cost": 1.0})
        _create("component", "Resistor", node_id="r2", fields={"partNumber": "R-100", "cost": 1.0})
        result = json.loads(srv.forge_export_bom())
        assert result["total_cost"] == 2.0
        (item,) = result["line_items"]
        assert item["quantity"] == 2
        assert item["node_ids"] == ["r1", "r2"]
        assert result["csv"].endswith(",,,,Total:,2.00")
