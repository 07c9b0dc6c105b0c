"""Dataclasses for project nodes, projects, and BOM line items."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import Field

from .utils import now_utc


NODE_TYPES = ("decision", "component", "task", "note", "subsystem", "assembly", "module")
CONTAINER_TYPES = ("subsystem", "assembly", "module")

DecisionStatus = Literal["pending", "selected"]
ComponentStatus = Literal["selected", "considering", "rejected"]
TaskStatus = Literal["pending", "in_progress", "blocked", "complete"]
TaskPriority = Literal["high", "medium", "low"]
ContainerStatus = Literal["planning", "in_progress", "complete", "on_hold"]

FieldValue = Union[int, float, str]


@dataclass
class NodeDates:
    created: datetime
    modified: datetime

    @classmethod
    def now(cls) -> NodeDates:
        stamp = now_utc()
        return cls(created=stamp, modified=stamp)


@dataclass
class DecisionOption:
    id: str
    name: str
    values: dict[str, FieldValue] = field(default_factory=dict)
    linked_node_id: str | None = None


@dataclass
class DecisionCriterion:
    id: str
    name: str
    weight: Annotated[float, Field(ge=0, le=10)] = 5.0
    unit: str | None = None


@dataclass
class ChecklistItem:
    id: str
    text: str
    completed: bool = False


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@dataclass
class BaseNode:
    id: str
    title: str
    tags: list[str] = field(default_factory=list)
    content: str = ""
    dates: NodeDates = field(default_factory=NodeDates.now)


@dataclass
class DecisionNode(BaseNode):
    type: Literal["decision"] = "decision"
    status: DecisionStatus = "pending"
    selected: str | None = None
    options: list[DecisionOption] = field(default_factory=list)
    criteria: list[DecisionCriterion] = field(default_factory=list)
    rationale: str | None = None
    selected_date: datetime | None = None
    parent: str | None = None


@dataclass
class ComponentNode(BaseNode):
    type: Literal["component"] = "component"
    status: ComponentStatus = "considering"
    cost: float | None = None
    supplier: str | None = None
    part_number: str | None = None
    custom_fields: dict[str, FieldValue] = field(default_factory=dict)
    parent: str | None = None


@dataclass
class TaskNode(BaseNode):
    type: Literal["task"] = "task"
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    depends_on: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)
    milestone: str | None = None
    parent: str | None = None


@dataclass
class NoteNode(BaseNode):
    type: Literal["note"] = "note"
    parent: str | None = None


@dataclass
class SubsystemNode(BaseNode):
    """Root container; has no parent."""
    type: Literal["subsystem"] = "subsystem"
    status: ContainerStatus = "planning"
    requirements: list[str] | None = None


@dataclass
class AssemblyNode(BaseNode):
    type: Literal["assembly"] = "assembly"
    status: ContainerStatus = "planning"
    requirements: list[str] | None = None
    parent: str | None = None


@dataclass
class ModuleNode(BaseNode):
    type: Literal["module"] = "module"
    status: ContainerStatus = "planning"
    requirements: list[str] | None = None
    parent: str | None = None


Node = Union[
    DecisionNode,
    ComponentNode,
    TaskNode,
    NoteNode,
    SubsystemNode,
    AssemblyNode,
    ModuleNode,
]

NODE_CLASSES: dict[str, type] = {
    "decision": DecisionNode,
    "component": ComponentNode,
    "task": TaskNode,
    "note": NoteNode,
    "subsystem": SubsystemNode,
    "assembly": AssemblyNode,
    "module": ModuleNode,
}


def is_container(node: Node) -> bool:
    return node.type in CONTAINER_TYPES


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@dataclass
class ProjectMetadata:
    created_at: datetime = field(default_factory=now_utc)
    modified_at: datetime = field(default_factory=now_utc)
    description: str | None = None
    node_order: list[str] | None = None
    node_positions: dict[str, dict[str, float]] | None = None


@dataclass
class Project:
    id: str
    name: str
    path: str = ""
    nodes: dict[str, Node] = field(default_factory=dict)
    metadata: ProjectMetadata = field(default_factory=ProjectMetadata)

    def tasks(self) -> list[TaskNode]:
        return [n for n in self.nodes.values() if n.type == "task"]

    def components(self) -> list[ComponentNode]:
        return [n for n in self.nodes.values() if n.type == "component"]

    def node_counts(self) -> dict[str, int]:
        """Count nodes per type; every known type appears, zero included."""
        counts = dict.fromkeys(NODE_TYPES, 0)
        for node in self.nodes.values():
            counts[node.type] += 1
        return counts

    def touch(self) -> None:
        self.metadata.modified_at = now_utc()


@dataclass
class BOMLineItem:
    """One aggregated row of a bill of materials."""
    part_number: str | None
    description: str
    supplier: str | None
    quantity: int
    unit_cost: float | None
    extended_cost: float | None
    node_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_node(node_type: str, node_id: str, title: str, **overrides) -> Node:
    """Create a node of ``node_type`` with its defaults, applying keyword overrides."""
    try:
        cls = NODE_CLASSES[node_type]
    except KeyError:
        raise ValueError(f"Unknown node type: {node_type}") from None
    return cls(id=node_id, title=title, **overrides)


def create_checklist_item(text: str) -> ChecklistItem:
    return ChecklistItem(id=str(uuid.uuid4()), text=text)


def create_decision_option(name: str, linked_node_id: str | None = None) -> DecisionOption:
    return DecisionOption(id=str(uuid.uuid4()), name=name, linked_node_id=linked_node_id)


def create_linked_decision_option(component: ComponentNode) -> DecisionOption:
    """Build an option that points back at an existing component."""
    return create_decision_option(component.title, linked_node_id=component.id)


def create_decision_criterion(name: str, weight: float = 5.0, unit: str | None = None) -> DecisionCriterion:
    return DecisionCriterion(id=str(uuid.uuid4()), name=name, weight=weight, unit=unit)
