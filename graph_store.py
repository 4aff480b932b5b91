from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from node_models import (
    CONNECTION_STYLE_KEYS,
    NODE_STYLE_KEYS,
    Connection,
    ConnectionStyle,
    Node,
    NodeStyle,
    coerce_style_value,
    utc_now,
)


@dataclass
class Snapshot:
    nodes: List[Node] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)


@dataclass
class ReplaceReport:
    """What ``GraphStore.replace`` had to drop to keep the graph consistent."""

    duplicate_nodes: list[str] = field(default_factory=list)
    duplicate_connections: list[str] = field(default_factory=list)
    dangling_connections: list[str] = field(default_factory=list)
    self_connections: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (
            self.duplicate_nodes
            or self.duplicate_connections
            or self.dangling_connections
            or self.self_connections
        )

    def describe(self) -> str:
        parts = []
        if self.duplicate_nodes:
            parts.append(f"{len(self.duplicate_nodes)} duplicate node(s)")
        if self.duplicate_connections:
            parts.append(f"{len(self.duplicate_connections)} duplicate connection(s)")
        if self.dangling_connections:
            parts.append(f"{len(self.dangling_connections)} dangling connection(s)")
        if self.self_connections:
            parts.append(f"{len(self.self_connections)} self connection(s)")
        return ", ".join(parts) if parts else "nothing"


def new_id() -> str:
    return uuid.uuid4().hex


class GraphStore:
    """In-memory owner of the nodes and connections of the open mind map.

    Connections always reference live nodes and never loop back onto their
    source. Both collections keep insertion order, which is also the hit
    test and draw order.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._connections: dict[str, Connection] = {}

    # -- queries ---------------------------------------------------------

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    @property
    def nodes(self) -> Iterable[Node]:
        return self._nodes.values()

    @property
    def connections(self) -> Iterable[Connection]:
        return self._connections.values()

    def node_count(self) -> int:
        return len(self._nodes)

    def connection_count(self) -> int:
        return len(self._connections)

    def is_empty(self) -> bool:
        return not self._nodes

    def connections_for(self, node_id: str) -> list[Connection]:
        return [
            connection
            for connection in self._connections.values()
            if node_id in (connection.from_node_id, connection.to_node_id)
        ]

    def snapshot(self) -> Snapshot:
        return Snapshot(list(self._nodes.values()), list(self._connections.values()))

    # -- nodes -----------------------------------------------------------

    def add_node(self, text: str, x: float, y: float, parent_id: Optional[str] = None) -> Node:
        node_id = new_id()
        while node_id in self._nodes:
            node_id = new_id()
        now = utc_now()
        node = Node(
            id=node_id,
            text=text,
            x=x,
            y=y,
            parent_id=parent_id,
            style=NodeStyle(),
            created_at=now,
            updated_at=now,
        )
        self._nodes[node_id] = node
        return node

    def delete_node(self, node_id: str) -> list[str]:
        """Delete ``node_id``, its parentId descendants and their connections.

        Returns the ids actually removed; an unknown id removes nothing.
        """
        if node_id not in self._nodes:
            return []
        doomed: list[str] = []
        visited: set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in visited or current not in self._nodes:
                continue
            visited.add(current)
            doomed.append(current)
            children = [
                node.id
                for node in self._nodes.values()
                if node.parent_id == current and node.id not in visited
            ]
            stack.extend(reversed(children))
        doomed_set = set(doomed)
        for connection_id in [
            connection.id
            for connection in self._connections.values()
            if connection.from_node_id in doomed_set or connection.to_node_id in doomed_set
        ]:
            del self._connections[connection_id]
        for doomed_id in doomed:
            del self._nodes[doomed_id]
        return doomed

    def update_node_text(self, node_id: str, text: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.text = text
        node.touch()
        return True

    def update_node_style(self, node_id: str, key: str, value: Any) -> bool:
        node = self._nodes.get(node_id)
        attribute = NODE_STYLE_KEYS.get(key)
        if node is None or attribute is None:
            return False
        coerced = coerce_style_value(attribute, value)
        if coerced is None:
            return False
        setattr(node.style, attribute, coerced)
        node.touch()
        return True

    def move_node(self, node_id: str, x: float, y: float) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.x = x
        node.y = y
        node.touch()
        return True

    # -- connections -----------------------------------------------------

    def add_connection(self, from_id: str, to_id: str) -> Optional[Connection]:
        if from_id == to_id:
            return None
        if from_id not in self._nodes or to_id not in self._nodes:
            return None
        connection_id = new_id()
        while connection_id in self._connections:
            connection_id = new_id()
        connection = Connection(
            id=connection_id,
            from_node_id=from_id,
            to_node_id=to_id,
            style=ConnectionStyle(),
        )
        self._connections[connection_id] = connection
        return connection

    def delete_connection(self, connection_id: str) -> bool:
        return self._connections.pop(connection_id, None) is not None

    def update_connection_style(self, connection_id: str, key: str, value: Any) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or key not in CONNECTION_STYLE_KEYS:
            return False
        coerced = coerce_style_value(key, value)
        if coerced is None:
            return False
        setattr(connection.style, key, coerced)
        return True

    # -- wholesale -------------------------------------------------------

    def clear(self) -> None:
        self._nodes.clear()
        self._connections.clear()

    def replace(self, nodes: Iterable[Node], connections: Iterable[Connection]) -> ReplaceReport:
        """Load a persisted graph, dropping anything that breaks the invariants."""
        report = ReplaceReport()
        self.clear()
        for node in nodes:
            if node.id in self._nodes:
                report.duplicate_nodes.append(node.id)
                continue
            self._nodes[node.id] = node
        for connection in connections:
            if connection.from_node_id == connection.to_node_id:
                report.self_connections.append(connection.id)
                continue
            if connection.id in self._connections:
                report.duplicate_connections.append(connection.id)
                continue
            if connection.from_node_id not in self._nodes or connection.to_node_id not in self._nodes:
                report.dangling_connections.append(connection.id)
                continue
            self._connections[connection.id] = connection
        return report
