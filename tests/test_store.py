"""Tests for the ProjectStore."""

import json
import textwrap
from datetime import datetime, timezone

import pytest

from forge_mcp.exceptions import ErrorCode
from forge_mcp.filesystem import LocalFileSystemAdapter, MemoryFileSystemAdapter
from forge_mcp.models import ComponentNode, NodeDates, Project, ProjectMetadata, TaskNode
from forge_mcp.store import (
    NODE_DIRECTORIES,
    ProjectStore,
    get_directory_for_node_type,
    get_node_file_path,
    get_node_id_from_path,
    get_node_type_for_directory,
)


ROOT = "/work/Rover Mk2"
DATES = NodeDates(
    created=datetime(2024, 3, 1, tzinfo=timezone.utc),
    modified=datetime(2024, 3, 2, tzinfo=timezone.utc),
)

VALID_TASK = textwrap.dedent("""\
    ---
    type: task
    status: in_progress
    priority: high
    depends_on:
      - order-parts
    created: '2024-03-01T00:00:00.000Z'
    modified: '2024-03-02T00:00:00.000Z'
    ---

    # Assemble chassis

    Bolt it together.
""")


@pytest.fixture
def adapter():
    return MemoryFileSystemAdapter()


@pytest.fixture
def store(adapter):
    return ProjectStore(adapter)


class TestPathHelpers:
    def test_directories(self):
        assert get_directory_for_node_type("assembly") == "assemblies"
        assert get_node_type_for_directory("modules") == "module"
        assert get_node_type_for_directory("misc") is None
        assert len(set(NODE_DIRECTORIES.values())) == 7

    def test_file_path(self):
        task = TaskNode(id="t1", title="T")
        assert get_node_file_path("/p", task) == "/p/tasks/t1.md"

    def test_id_from_path(self):
        assert get_node_id_from_path("/p/tasks/wire-harness.md") == "wire-harness"
        assert get_node_id_from_path("C:\\p\\notes\\n.md") == "n"


class TestLoad:
    def test_missing_root_is_fatal(self, store):
        result = store.load("/nowhere")
        assert result.project is None
        assert result.parse_errors == []
        assert "not found" in result.error

    def test_loads_valid_node(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/assemble-chassis.md", VALID_TASK)
        result = store.load(ROOT)
        assert result.error is None
        assert result.parse_errors == []
        task = result.project.nodes["assemble-chassis"]
        assert task.title == "Assemble chassis"
        assert task.content == "Bolt it together."
        assert task.status == "in_progress"
        assert task.depends_on == ["order-parts"]
        assert task.dates == DATES

    def test_project_identity_from_path(self, adapter, store):
        adapter.mkdir(ROOT)
        project = store.load(ROOT).project
        assert project.name == "Rover Mk2"
        assert project.id == "rover-mk2"
        assert project.path == ROOT
        assert project.nodes == {}

    def test_partial_load_tolerance(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/good.md", VALID_TASK)
        adapter.write_file(f"{ROOT}/tasks/bad.md", "---\ntype: [oops\n---\n# Bad\n")
        result = store.load(ROOT)
        assert len(result.project.nodes) == 1
        assert len(result.parse_errors) >= 1
        assert result.parse_errors[0].path.endswith("bad.md")
        assert "Failed to parse frontmatter" in result.parse_errors[0].message

    def test_impossible_date_falls_back_to_now(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/good.md", VALID_TASK)
        adapter.write_file(f"{ROOT}/tasks/bad-date.md", "---\ntype: task\ncreated: 2024-13-45\n---\n# Odd date\n")
        result = store.load(ROOT)
        assert set(result.project.nodes) == {"good", "bad-date"}
        assert result.parse_errors == []
        assert result.project.nodes["bad-date"].dates.created.year >= 2024

    def test_yaml_constructor_error_is_recorded(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/good.md", VALID_TASK)
        adapter.write_file(f"{ROOT}/tasks/bad.md", "---\ntype: task\nestimate: !!int soon\n---\n# Bad\n")
        result = store.load(ROOT)
        assert set(result.project.nodes) == {"good"}
        assert len(result.parse_errors) == 1
        assert result.parse_errors[0].path.endswith("bad.md")

    def test_validation_failure_is_recorded(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/t.md", "---\ntype: task\nstatus: finished\n---\n# T\n")
        result = store.load(ROOT)
        assert result.project.nodes == {}
        issue = result.parse_errors[0]
        assert issue.validation_error.code == ErrorCode.INVALID_VALUE
        assert issue.to_dict()["validation_error"]["path"] == "status"

    def test_filename_is_authoritative_id(self, adapter, store):
        adapter.write_file(f"{ROOT}/notes/real-id.md", "---\ntype: note\nid: other\n---\n# N\n")
        assert list(store.load(ROOT).project.nodes) == ["real-id"]

    def test_type_mismatch_keeps_node(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/misfiled.md", "---\ntype: decision\n---\n# Misfiled\n")
        result = store.load(ROOT)
        assert result.project.nodes["misfiled"].type == "decision"
        assert len(result.parse_errors) == 1
        assert "type mismatch" in result.parse_errors[0].message

    def test_ignores_non_markdown_and_subdirectories(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks/notes.txt", "x")
        adapter.write_file(f"{ROOT}/tasks/archive/old.md", VALID_TASK)
        result = store.load(ROOT)
        assert result.project.nodes == {}
        assert result.parse_errors == []

    def test_project_json_metadata(self, adapter, store):
        adapter.write_file(f"{ROOT}/project.json", json.dumps({
            "createdAt": "2024-01-01T00:00:00.000Z",
            "modifiedAt": "2024-01-05T00:00:00.000Z",
            "description": "Six-wheel rover",
            "nodeOrder": ["a", "b"],
            "nodePositions": {"a": {"x": 1, "y": 2.5}},
        }))
        metadata = store.load(ROOT).project.metadata
        assert metadata.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert metadata.description == "Six-wheel rover"
        assert metadata.node_order == ["a", "b"]
        assert metadata.node_positions == {"a": {"x": 1.0, "y": 2.5}}

    def test_malformed_project_json(self, adapter, store):
        adapter.write_file(f"{ROOT}/project.json", "{not json")
        result = store.load(ROOT)
        assert result.project is not None
        assert result.project.metadata.description is None
        assert "Failed to parse project.json" in result.parse_errors[0].message

    def test_wrongly_shaped_project_json(self, adapter, store):
        adapter.write_file(f"{ROOT}/project.json", json.dumps({"nodeOrder": "a,b"}))
        result = store.load(ROOT)
        assert result.project.metadata.node_order is None
        assert len(result.parse_errors) == 1


class TestSave:
    def test_creates_directory_and_file(self, adapter, store):
        adapter.mkdir(ROOT)
        task = TaskNode(id="t1", title="First", dates=DATES)
        result = store.save_node(ROOT, task)
        assert result.success
        assert result.path == f"{ROOT}/tasks/t1.md"
        assert adapter.read_file(result.path).startswith("---\ntype: task\n")

    def test_saving_twice_is_byte_identical(self, adapter, store):
        task = TaskNode(id="t1", title="First", dates=DATES, depends_on=["x"])
        store.save_node(ROOT, task)
        first = adapter.read_file(f"{ROOT}/tasks/t1.md")
        store.save_node(ROOT, task)
        assert adapter.read_file(f"{ROOT}/tasks/t1.md") == first

    def test_overwrites(self, adapter, store):
        store.save_node(ROOT, TaskNode(id="t1", title="Old", dates=DATES))
        store.save_node(ROOT, TaskNode(id="t1", title="New", dates=DATES))
        assert "# New" in adapter.read_file(f"{ROOT}/tasks/t1.md")

    def test_save_then_load(self, adapter, store):
        component = ComponentNode(id="r1", title="Resistor", dates=DATES, cost=0.1, part_number="R-100")
        adapter.mkdir(ROOT)
        store.save_node(ROOT, component)
        assert store.load(ROOT).project.nodes["r1"] == component

    def test_write_failure_reported(self, adapter, store):
        adapter.write_file(f"{ROOT}/tasks", "a file where a directory should be")
        result = store.save_node(ROOT, TaskNode(id="t1", title="T"))
        assert not result.success
        assert result.error

    def test_save_project(self, store):
        project = Project(
            id="rover-mk2",
            name="Rover Mk2",
            path=ROOT,
            nodes={
                "t1": TaskNode(id="t1", title="First", dates=DATES),
                "r1": ComponentNode(id="r1", title="Resistor", dates=DATES),
            },
            metadata=ProjectMetadata(description="Bench build"),
        )
        assert store.save_project(project) == []
        loaded = store.load(ROOT).project
        assert loaded.nodes == project.nodes
        assert loaded.metadata.description == "Bench build"


class TestDelete:
    def test_delete_existing(self, adapter, store):
        task = TaskNode(id="t1", title="T")
        store.save_node(ROOT, task)
        assert store.delete_node(ROOT, task).success
        assert not adapter.exists(f"{ROOT}/tasks/t1.md")

    def test_delete_missing_is_success(self, store):
        assert store.delete_node(ROOT, TaskNode(id="ghost", title="G")).success


class TestInitialize:
    def test_creates_skeleton(self, adapter, store):
        project = store.initialize(ROOT, description="New rover")
        for directory in NODE_DIRECTORIES.values():
            assert adapter.exists(f"{ROOT}/{directory}")
        data = json.loads(adapter.read_file(f"{ROOT}/project.json"))
        assert data["description"] == "New rover"
        assert data["name"] == "Rover Mk2"
        assert project.nodes == {}
        assert project.name == "Rover Mk2"
        assert project.metadata.created_at == project.metadata.modified_at

    def test_initialize_then_load(self, store):
        store.initialize(ROOT, description="New rover")
        result = store.load(ROOT)
        assert result.parse_errors == []
        assert result.project.metadata.description == "New rover"

    def test_save_metadata(self, adapter, store):
        metadata = ProjectMetadata(description="d", node_order=["x"])
        assert store.save_metadata(ROOT, metadata).success
        data = json.loads(adapter.read_file(f"{ROOT}/project.json"))
        assert data["nodeOrder"] == ["x"]
        assert "nodePositions" not in data


class TestLocalDisk:
    def test_round_trip_on_disk(self, tmp_path):
        store = ProjectStore(LocalFileSystemAdapter())
        root = (tmp_path / "bench-psu").as_posix()
        store.initialize(root)
        task = TaskNode(id="solder", title="Solder board", dates=DATES, priority="low")
        store.save_node(root, task)
        result = store.load(root)
        assert result.project.id == "bench-psu"
        assert result.project.nodes["solder"] == task

    def test_undecodable_file_is_recorded(self, tmp_path):
        store = ProjectStore(LocalFileSystemAdapter())
        root = (tmp_path / "bench-psu").as_posix()
        store.initialize(root)
        store.save_node(root, TaskNode(id="good", title="Good", dates=DATES))
        (tmp_path / "bench-psu" / "tasks" / "bad.md").write_bytes(b"---\ntype: task\n---\n# \xff\xfe\n")
        result = store.load(root)
        assert set(result.project.nodes) == {"good"}
        assert len(result.parse_errors) == 1
        assert "Failed to read file" in result.parse_errors[0].message
