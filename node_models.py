from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

FontWeight = Literal["normal", "bold"]
Shape = Literal["rectangle", "circle", "diamond"]
LineStyle = Literal["solid", "dashed", "dotted"]

FONT_WEIGHTS: tuple[str, ...] = ("normal", "bold")
SHAPES: tuple[str, ...] = ("rectangle", "circle", "diamond")
LINE_STYLES: tuple[str, ...] = ("solid", "dashed", "dotted")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Accept ISO 8601 strings (with or without ``Z``), epoch millis or datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return utc_now()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utc_now()


@dataclass
class NodeStyle:
    background_color: str = "#3b82f6"
    text_color: str = "#ffffff"
    border_color: str = "#1d4ed8"
    border_width: float = 2
    border_radius: float = 8
    font_size: float = 14
    font_weight: FontWeight = "normal"
    shape: Shape = "rectangle"

    def to_dict(self) -> dict[str, Any]:
        return {
            "backgroundColor": self.background_color,
            "textColor": self.text_color,
            "borderColor": self.border_color,
            "borderWidth": self.border_width,
            "borderRadius": self.border_radius,
            "fontSize": self.font_size,
            "fontWeight": self.font_weight,
            "shape": self.shape,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "NodeStyle":
        style = cls()
        for key, value in (data or {}).items():
            attribute = NODE_STYLE_KEYS.get(key)
            if attribute is not None and value is not None:
                coerced = coerce_style_value(attribute, value)
                if coerced is not None:
                    setattr(style, attribute, coerced)
        return style


@dataclass
class ConnectionStyle:
    color: str = "#64748b"
    width: float = 2
    style: LineStyle = "solid"

    def to_dict(self) -> dict[str, Any]:
        return {"color": self.color, "width": self.width, "style": self.style}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ConnectionStyle":
        style = cls()
        for key, value in (data or {}).items():
            if key in CONNECTION_STYLE_KEYS and value is not None:
                coerced = coerce_style_value(key, value)
                if coerced is not None:
                    setattr(style, key, coerced)
        return style


# Wire names (camelCase) and attribute names both resolve to the attribute.
NODE_STYLE_KEYS: dict[str, str] = {
    "backgroundColor": "background_color",
    "textColor": "text_color",
    "borderColor": "border_color",
    "borderWidth": "border_width",
    "borderRadius": "border_radius",
    "fontSize": "font_size",
    "fontWeight": "font_weight",
    "shape": "shape",
    "background_color": "background_color",
    "text_color": "text_color",
    "border_color": "border_color",
    "border_width": "border_width",
    "border_radius": "border_radius",
    "font_size": "font_size",
    "font_weight": "font_weight",
}
CONNECTION_STYLE_KEYS: tuple[str, ...] = ("color", "width", "style")


def coerce_style_value(attribute: str, value: Any) -> Any:
    """Return ``value`` converted for ``attribute`` or ``None`` when it is invalid."""
    if attribute in {"border_width", "border_radius", "font_size", "width"}:
        if isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if number < 0:
            return None
        return int(number) if number.is_integer() else number
    if attribute == "font_weight":
        return value if value in FONT_WEIGHTS else None
    if attribute == "shape":
        return value if value in SHAPES else None
    if attribute == "style":
        return value if value in LINE_STYLES else None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass
class Node:
    id: str
    text: str
    x: float
    y: float
    parent_id: Optional[str] = None
    style: NodeStyle = field(default_factory=NodeStyle)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "x": self.x,
            "y": self.y,
            "style": self.style.to_dict(),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.parent_id:
            payload["parentId"] = self.parent_id
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        node_id = data.get("id") or data.get("_id")
        if not node_id:
            raise ValueError("node is missing an id")
        return cls(
            id=str(node_id),
            text=str(data.get("text") or ""),
            x=float(data.get("x") or 0),
            y=float(data.get("y") or 0),
            parent_id=data.get("parentId") or None,
            style=NodeStyle.from_dict(data.get("style")),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Connection:
    id: str
    from_node_id: str
    to_node_id: str
    style: ConnectionStyle = field(default_factory=ConnectionStyle)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fromNodeId": self.from_node_id,
            "toNodeId": self.to_node_id,
            "style": self.style.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Connection":
        connection_id = data.get("id") or data.get("_id")
        if not connection_id:
            raise ValueError("connection is missing an id")
        return cls(
            id=str(connection_id),
            from_node_id=str(data.get("fromNodeId") or ""),
            to_node_id=str(data.get("toNodeId") or ""),
            style=ConnectionStyle.from_dict(data.get("style")),
        )


@dataclass
class MindMap:
    """Persisted aggregate: metadata plus the full node/connection lists."""

    id: str
    title: str
    description: Optional[str] = None
    nodes: List[Node] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    user_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "nodes": [node.to_dict() for node in self.nodes],
            "connections": [connection.to_dict() for connection in self.connections],
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.user_id:
            payload["userId"] = self.user_id
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MindMap":
        mindmap_id = data.get("id") or data.get("_id")
        if not mindmap_id:
            raise ValueError("mind map is missing an id")
        user_id = data.get("userId")
        return cls(
            id=str(mindmap_id),
            title=str(data.get("title") or data.get("name") or ""),
            description=data.get("description"),
            nodes=[Node.from_dict(item) for item in data.get("nodes") or []],
            connections=[Connection.from_dict(item) for item in data.get("connections") or []],
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            user_id=str(user_id) if user_id else None,
        )
