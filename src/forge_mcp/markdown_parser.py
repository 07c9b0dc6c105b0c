"""Node <-> Markdown: YAML frontmatter, title heading, wikilinks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from .models import Node
from .utils import to_iso


_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?\n)?---[ \t]*(?:\n|\Z)", re.DOTALL)
_TITLE_RE = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)
_TITLE_LINE_RE = re.compile(r"^#[ \t]+.+\n?", re.MULTILINE)
_WIKILINK_RE = re.compile(r"(!?)\[\[([^\]]+)\]\]")
_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)
_INDENTED_CODE_RE = re.compile(r"(?:^|\n)(?: {4}|\t).+")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")

FIELD_ORDER = (
    "type",
    "status",
    "priority",
    "selected",
    "cost",
    "supplier",
    "partNumber",
    "depends_on",
    "blocks",
    "tags",
    "created",
    "modified",
)
_FIELD_RANK = {key: rank for rank, key in enumerate(FIELD_ORDER)}


@dataclass
class ParsedMarkdown:
    frontmatter: dict[str, Any] = field(default_factory=dict)
    title: str | None = None
    body: str = ""
    wiki_links: list[str] = field(default_factory=list)
    error: str | None = None

    def merged(self, node_id: str) -> dict[str, Any]:
        """Frontmatter plus id, title and content, ready for ``validate_node``.

        The heading title wins over a frontmatter ``title``; the id is the
        fallback when neither is present.
        """
        return {
            **self.frontmatter,
            "id": node_id,
            "title": self.title or self.frontmatter.get("title") or node_id,
            "content": self.body,
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _FrontmatterLoader(yaml.SafeLoader):
    """SafeLoader that keeps impossible timestamps such as 2024-13-45 as strings."""


def _construct_timestamp(loader: yaml.SafeLoader, node: yaml.Node):
    try:
        return loader.construct_yaml_timestamp(node)
    except ValueError:
        return loader.construct_scalar(node)


_FrontmatterLoader.add_constructor("tag:yaml.org,2002:timestamp", _construct_timestamp)


def extract_wiki_links(markdown: str) -> list[str]:
    """Return ``[[target]]`` links outside code, de-duplicated, ``|alias`` stripped."""
    if not markdown or not markdown.strip():
        return []
    cleaned = _FENCED_CODE_RE.sub("", markdown)
    cleaned = _INDENTED_CODE_RE.sub("", cleaned)
    cleaned = _INLINE_CODE_RE.sub("", cleaned)
    links = [
        target.split("|")[0].strip()
        for prefix, target in _WIKILINK_RE.findall(cleaned)
        if not prefix  # skip ![[...]] embeds
    ]
    return [link for link in dict.fromkeys(links) if link]


def split_title(content: str) -> tuple[str | None, str]:
    """Pull the first ``# Heading`` out of content. Returns (title, body)."""
    if not content or not content.strip():
        return None, ""
    match = _TITLE_RE.search(content)
    if not match:
        return None, content.strip()
    body = _TITLE_LINE_RE.sub("", content, count=1)
    return match.group(1).strip(), body.strip()


def parse_markdown(text: str) -> ParsedMarkdown:
    """Parse a Markdown file with optional YAML frontmatter.

    Malformed YAML does not raise: ``error`` describes it and the caller
    decides whether that is fatal.
    """
    if not text or not text.strip():
        return ParsedMarkdown()
    text = text.replace("\r\n", "\n")

    frontmatter: dict[str, Any] = {}
    error = None
    content = text
    fm_match = _FRONTMATTER_RE.match(text)
    if fm_match:
        content = text[fm_match.end():]
        try:
            loaded = yaml.load(fm_match.group(1) or "", Loader=_FrontmatterLoader)
        except (yaml.YAMLError, ValueError) as exc:
            loaded = None
            error = str(exc)
        if isinstance(loaded, dict):
            frontmatter = loaded
        elif loaded is not None and error is None:
            error = f"Frontmatter must be a mapping, got {type(loaded).__name__}"

    title, body = split_title(content)
    return ParsedMarkdown(
        frontmatter=frontmatter,
        title=title,
        body=body,
        wiki_links=extract_wiki_links(content),
        error=error,
    )


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _option_to_dict(option) -> dict[str, Any]:
    data: dict[str, Any] = {"id": option.id, "name": option.name, "values": dict(option.values)}
    if option.linked_node_id:
        data["linkedNodeId"] = option.linked_node_id
    return data


def _criterion_to_dict(criterion) -> dict[str, Any]:
    data: dict[str, Any] = {"id": criterion.id, "name": criterion.name, "weight": criterion.weight}
    if criterion.unit is not None:
        data["unit"] = criterion.unit
    return data


def node_to_frontmatter(node: Node) -> dict[str, Any]:
    """Variant-specific frontmatter; empty optional values are left out."""
    fm: dict[str, Any] = {"type": node.type}

    if node.type == "decision":
        fm["status"] = node.status
        if node.selected is not None:
            fm["selected"] = node.selected
        if node.options:
            fm["options"] = [_option_to_dict(o) for o in node.options]
        if node.criteria:
            fm["criteria"] = [_criterion_to_dict(c) for c in node.criteria]
        if node.rationale is not None:
            fm["rationale"] = node.rationale
        if node.selected_date is not None:
            fm["selected_date"] = to_iso(node.selected_date)
    elif node.type == "component":
        fm["status"] = node.status
        if node.cost is not None:
            fm["cost"] = node.cost
        if node.supplier is not None:
            fm["supplier"] = node.supplier
        if node.part_number:
            fm["partNumber"] = node.part_number
        if node.custom_fields:
            fm["customFields"] = dict(node.custom_fields)
    elif node.type == "task":
        fm["status"] = node.status
        fm["priority"] = node.priority
        if node.depends_on:
            fm["depends_on"] = list(node.depends_on)
        if node.blocks:
            fm["blocks"] = list(node.blocks)
        if node.checklist:
            fm["checklist"] = [
                {"id": item.id, "text": item.text, "completed": item.completed}
                for item in node.checklist
            ]
        if node.milestone:
            fm["milestone"] = node.milestone
    elif node.type in ("subsystem", "assembly", "module"):
        fm["status"] = node.status
        if node.requirements is not None:
            fm["requirements"] = list(node.requirements)

    if getattr(node, "parent", None):
        fm["parent"] = node.parent
    if node.tags:
        fm["tags"] = list(node.tags)
    fm["created"] = to_iso(node.dates.created)
    fm["modified"] = to_iso(node.dates.modified)

    ordered = sorted(fm, key=lambda key: (_FIELD_RANK.get(key, len(FIELD_ORDER)), key))
    return {key: fm[key] for key in ordered}


def serialize_node(node: Node) -> str:
    """Generate a markdown string with YAML frontmatter from a node."""
    frontmatter = yaml.dump(
        node_to_frontmatter(node),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    ).strip()
    body = f"# {node.title}\n\n{node.content}".strip()
    return f"---\n{frontmatter}\n---\n\n{body}\n"
