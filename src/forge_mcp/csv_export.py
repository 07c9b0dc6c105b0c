"""
CSV exports for components and the bill of materials.

Both formats are written for spreadsheets: comma-delimited, CRLF line
endings, and optionally a leading UTF-8 byte order mark.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from .models import BOMLineItem, ComponentNode, Node, Project
from .utils import now_utc, slugify, to_iso

UTF8_BOM = "\ufeff"

DEFAULT_COMPONENT_FIELDS = (
    "id",
    "title",
    "status",
    "cost",
    "supplier",
    "partNumber",
    "tags",
    "customFields",
    "created",
    "modified",
)

FIELD_HEADERS = {
    "id": "ID",
    "title": "Title",
    "status": "Status",
    "cost": "Cost",
    "supplier": "Supplier",
    "partNumber": "Part Number",
    "tags": "Tags",
    "customFields": "Custom Fields",
    "created": "Created",
    "modified": "Modified",
}

_FIELD_ALIASES = {"part_number": "partNumber", "custom_fields": "customFields"}

BOM_HEADERS = ["Part Number", "Description", "Supplier", "Quantity", "Unit Cost", "Extended Cost"]


@dataclass
class CSVExportResult:
    data: str
    component_count: int
    filename: str = "components.csv"


@dataclass
class BOMExportResult:
    data: str
    total_cost: float
    unknown_cost_count: int
    filename: str
    line_items: list[BOMLineItem] = field(default_factory=list)

    @property
    def line_item_count(self) -> int:
        return len(self.line_items)


def _format_number(value: float | int | None) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_custom_fields(custom_fields: Mapping[str, object]) -> str:
    return "; ".join(f"{key}:{_format_number(v) if isinstance(v, (int, float)) else v}"
                     for key, v in custom_fields.items())


def _field_value(component: ComponentNode, name: str) -> str:
    if name == "id":
        return component.id
    if name == "title":
        return component.title
    if name == "status":
        return component.status
    if name == "cost":
        return _format_number(component.cost)
    if name == "supplier":
        return component.supplier or ""
    if name == "partNumber":
        return component.part_number or ""
    if name == "tags":
        return "; ".join(component.tags)
    if name == "customFields":
        return _format_custom_fields(component.custom_fields)
    if name == "created":
        return to_iso(component.dates.created)
    if name == "modified":
        return to_iso(component.dates.modified)
    return ""


def _to_csv(rows: Iterable[Sequence[object]], include_bom: bool) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\r\n")
    writer.writerows(rows)
    text = output.getvalue()
    if text.endswith("\r\n"):
        text = text[:-2]
    return UTF8_BOM + text if include_bom else text


def export_components_to_csv(
    nodes: Mapping[str, Node] | Iterable[Node],
    fields: Sequence[str] | None = None,
    include_bom: bool = True,
) -> CSVExportResult:
    """Export component nodes, one row each, sorted by title.

    ``fields`` selects and orders columns; unknown names are ignored.
    """
    if isinstance(nodes, Mapping):
        nodes = nodes.values()
    components = [node for node in nodes if node.type == "component"]
    components.sort(key=lambda c: (c.title.casefold(), c.id))

    if fields is None:
        selected = list(DEFAULT_COMPONENT_FIELDS)
    else:
        selected = [_FIELD_ALIASES.get(f, f) for f in fields]
        selected = [f for f in selected if f in FIELD_HEADERS]

    rows: list[list[str]] = [[FIELD_HEADERS[f] for f in selected]]
    rows.extend([_field_value(component, f) for f in selected] for component in components)
    return CSVExportResult(data=_to_csv(rows, include_bom), component_count=len(components))


def build_bom(project: Project) -> list[BOMLineItem]:
    """Group components by part number into BOM line items.

    Components without a part number each get their own line. A group's unit
    cost is the first known cost among its members.
    """
    groups: dict[str, BOMLineItem] = {}
    for component in sorted(project.components(), key=lambda c: c.id):
        key = component.part_number or f"_no_pn_{component.id}"
        item = groups.get(key)
        if item is None:
            groups[key] = BOMLineItem(
                part_number=component.part_number or None,
                description=component.title,
                supplier=component.supplier or None,
                quantity=1,
                unit_cost=component.cost,
                extended_cost=None,
                node_ids=[component.id],
            )
            continue
        item.quantity += 1
        item.node_ids.append(component.id)
        if item.unit_cost is None:
            item.unit_cost = component.cost
        if item.supplier is None:
            item.supplier = component.supplier or None

    for item in groups.values():
        if item.unit_cost is not None:
            item.extended_cost = item.quantity * item.unit_cost

    numbered = sorted(
        (i for i in groups.values() if i.part_number),
        key=lambda i: (i.part_number.casefold(), i.description.casefold()),
    )
    unnumbered = sorted(
        (i for i in groups.values() if not i.part_number),
        key=lambda i: (i.description.casefold(), i.node_ids[0]),
    )
    return numbered + unnumbered


def export_bom(project: Project, include_bom: bool = True) -> BOMExportResult:
    """Export the grouped bill of materials with a trailing total row."""
    line_items = build_bom(project)
    total_cost = sum(i.extended_cost for i in line_items if i.extended_cost is not None)
    unknown_cost_count = sum(i.quantity for i in line_items if i.extended_cost is None)

    rows: list[list[str]] = [BOM_HEADERS]
    for item in line_items:
        rows.append([
            item.part_number or "",
            item.description,
            item.supplier or "",
            str(item.quantity),
            f"{item.unit_cost:.2f}" if item.unit_cost is not None else "",
            f"{item.extended_cost:.2f}" if item.extended_cost is not None else "",
        ])
    rows.append([])
    rows.append(["", "", "", "", "Total:", f"{total_cost:.2f}"])
    if unknown_cost_count:
        rows.append(["", "", "", "", "Unknown Cost Items:", str(unknown_cost_count)])

    stamp = now_utc().date().isoformat()
    return BOMExportResult(
        data=_to_csv(rows, include_bom),
        total_cost=total_cost,
        unknown_cost_count=unknown_cost_count,
        filename=f"{slugify(project.name) or 'project'}-bom-{stamp}.csv",
        line_items=line_items,
    )
