from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Literal, NamedTuple, Optional, Protocol

import regex
from rich.cells import cell_len

from node_models import Node, NodeStyle

PADDING = 12
MIN_WIDTH = 80

_GRAPHEME_RE = regex.compile(r"\X")
# Average advance of one terminal cell, in em.
_CELL_ADVANCE = 0.6
_BOLD_FACTOR = 1.05


class Point(NamedTuple):
    x: float
    y: float


class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    def contains(self, point: Point) -> bool:
        return (
            self.x <= point.x <= self.x + self.width
            and self.y <= point.y <= self.y + self.height
        )

    def inflate(self, margin: float) -> "Rect":
        return Rect(
            self.x - margin,
            self.y - margin,
            self.width + margin * 2,
            self.height + margin * 2,
        )


@dataclass(frozen=True)
class Font:
    size: float
    weight: Literal["normal", "bold"] = "normal"

    def css(self) -> str:
        return f"{self.weight} {self.size:g}px Inter, sans-serif"


class TextMeasurer(Protocol):
    def measure(self, text: str, font: Font) -> float: ...


class CellMeasurer:
    """Measure text as terminal cells, one grapheme cluster at a time."""

    def __init__(self, advance: float = _CELL_ADVANCE) -> None:
        self.advance = advance

    def measure(self, text: str, font: Font) -> float:
        cells = sum(min(cell_len(grapheme), 2) for grapheme in _GRAPHEME_RE.findall(text))
        width = cells * font.size * self.advance
        if font.weight == "bold":
            width *= _BOLD_FACTOR
        return width


DEFAULT_MEASURER = CellMeasurer()


def font_for(style: NodeStyle) -> Font:
    return Font(size=style.font_size, weight=style.font_weight)


def bounding_box(node: Node, measurer: TextMeasurer = DEFAULT_MEASURER) -> Rect:
    font = font_for(node.style)
    width = max(measurer.measure(node.text, font) + PADDING * 2, MIN_WIDTH)
    height = node.style.font_size + PADDING * 2
    return Rect(node.x - width / 2, node.y - height / 2, width, height)


def circle_radius(box: Rect) -> float:
    return max(box.width, box.height) / 2


def hit_test(point: Point, node: Node, measurer: TextMeasurer = DEFAULT_MEASURER) -> bool:
    box = bounding_box(node, measurer)
    if node.style.shape == "circle":
        return math.hypot(point.x - node.x, point.y - node.y) <= circle_radius(box)
    # Diamonds use their bounding rectangle.
    return box.contains(point)


def node_at(
    point: Point,
    nodes: Iterable[Node],
    measurer: TextMeasurer = DEFAULT_MEASURER,
) -> Optional[Node]:
    """Return the first node under ``point`` in iteration order."""
    for node in nodes:
        if hit_test(point, node, measurer):
            return node
    return None


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def midpoint(a: Point, b: Point) -> Point:
    return Point((a.x + b.x) / 2, (a.y + b.y) / 2)
