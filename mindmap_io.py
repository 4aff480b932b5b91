from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from graph_store import Snapshot
from node_models import Node, format_timestamp, utc_now


def export_document(
    title: str,
    description: str,
    snapshot: Snapshot,
    exported_at: Optional[datetime] = None,
) -> dict[str, Any]:
    return {
        "title": title,
        "description": description,
        "nodes": [node.to_dict() for node in snapshot.nodes],
        "connections": [connection.to_dict() for connection in snapshot.connections],
        "exportedAt": format_timestamp(exported_at or utc_now()),
    }


def export_filename(when: Optional[datetime] = None, suffix: str = "json") -> str:
    stamp = (when or utc_now()).date().isoformat()
    return f"mindmap-{stamp}.{suffix}"


def write_export(document: dict[str, Any], directory: Path = Path(".")) -> Path:
    path = directory / export_filename()
    path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def to_markdown(title: str, snapshot: Snapshot) -> str:
    """Serialize the graph as a Markdown outline.

    - The map title becomes the level 1 heading.
    - parentId links decide nesting: roots are level 2 headings, their
      children level 3, anything deeper a bullet indented two spaces per level.
    - Connections that do not mirror a parent link are listed last.
    - Each node is written once even if parentId links form a cycle.
    """
    by_id = {node.id: node for node in snapshot.nodes}
    children: dict[str, List[Node]] = {}
    roots: List[Node] = []
    for node in snapshot.nodes:
        if node.parent_id and node.parent_id in by_id and node.parent_id != node.id:
            children.setdefault(node.parent_id, []).append(node)
        else:
            roots.append(node)

    lines: List[str] = [f"# {title}".rstrip()]
    written: set[str] = set()

    def write(top: Node) -> None:
        stack = [(top, 0)]
        while stack:
            node, depth = stack.pop()
            if node.id in written:
                continue
            written.add(node.id)
            label = node.text.strip() or "(untitled)"
            if depth <= 1:
                lines.append("")
                lines.append(f"{'#' * (depth + 2)} {label}")
            else:
                lines.append(f"{'  ' * (depth - 2)}* {label}")
            stack.extend((child, depth + 1) for child in reversed(children.get(node.id, [])))

    for root in roots:
        write(root)
    # Nodes only reachable through a parentId cycle.
    for node in snapshot.nodes:
        write(node)

    cross_links = [
        connection
        for connection in snapshot.connections
        if by_id.get(connection.to_node_id) is None
        or by_id[connection.to_node_id].parent_id != connection.from_node_id
    ]
    if cross_links:
        lines.append("")
        lines.append("## Connections")
        lines.append("")
        for connection in cross_links:
            source = by_id.get(connection.from_node_id)
            target = by_id.get(connection.to_node_id)
            if source is None or target is None:
                continue
            lines.append(f"* {source.text.strip()} → {target.text.strip()}")

    text = "\n".join(lines).strip()
    return f"{text}\n" if text else ""
