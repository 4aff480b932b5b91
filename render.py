from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import regex
from rich.cells import cell_len
from rich.color import Color, ColorParseError
from rich.style import Style
from rich.text import Text

from geometry import DEFAULT_MEASURER, Font, Point, Rect, TextMeasurer, bounding_box, circle_radius, font_for
from graph_store import Snapshot
from node_models import Connection, Node
from view_transform import ViewTransform

CELL_WIDTH = 8.0
CELL_HEIGHT = 16.0
CANVAS_BACKGROUND = "#0f0f0f"
SELECTION_COLOR = "#3b82f6"
SELECTION_WIDTH = 3
SELECTION_MARGIN = 5

DASH_PATTERNS: dict[str, list[float]] = {
    "solid": [],
    "dashed": [5, 5],
    "dotted": [2, 3],
}

_GRAPHEME_RE = regex.compile(r"\X")


class DrawingContext(Protocol):
    """The subset of a 2D canvas API the renderer draws with."""

    def clear(self) -> None: ...

    def save(self) -> None: ...

    def restore(self) -> None: ...

    def translate(self, dx: float, dy: float) -> None: ...

    def scale(self, factor: float) -> None: ...

    def set_line_dash(self, pattern: Sequence[float]) -> None: ...

    def stroke_line(self, start: Point, end: Point, color: str, width: float) -> None: ...

    def fill_rect(self, rect: Rect, color: str) -> None: ...

    def stroke_rect(self, rect: Rect, color: str, width: float) -> None: ...

    def fill_circle(self, center: Point, radius: float, color: str) -> None: ...

    def stroke_circle(self, center: Point, radius: float, color: str, width: float) -> None: ...

    def fill_polygon(self, points: Sequence[Point], color: str) -> None: ...

    def stroke_polygon(self, points: Sequence[Point], color: str, width: float) -> None: ...

    def fill_text(self, text: str, center: Point, color: str, font: Font) -> None: ...


def diamond_points(node: Node, box: Rect) -> list[Point]:
    return [
        Point(node.x, node.y - box.height / 2),
        Point(node.x + box.width / 2, node.y),
        Point(node.x, node.y + box.height / 2),
        Point(node.x - box.width / 2, node.y),
    ]


class Renderer:
    """Draws a graph snapshot through a view transform onto one context."""

    def __init__(self, context: DrawingContext, measurer: TextMeasurer = DEFAULT_MEASURER) -> None:
        self.context = context
        self.measurer = measurer

    def render(self, snapshot: Snapshot, view: ViewTransform, selected_id: Optional[str] = None) -> None:
        ctx = self.context
        ctx.clear()
        ctx.save()
        ctx.translate(view.pan_x, view.pan_y)
        ctx.scale(view.scale)
        by_id = {node.id: node for node in snapshot.nodes}
        for connection in snapshot.connections:
            self._render_connection(connection, by_id)
        for node in snapshot.nodes:
            self._render_node(node, node.id == selected_id)
        ctx.restore()

    def _render_connection(self, connection: Connection, by_id: dict[str, Node]) -> None:
        source = by_id.get(connection.from_node_id)
        target = by_id.get(connection.to_node_id)
        if source is None or target is None:
            return
        ctx = self.context
        ctx.set_line_dash(DASH_PATTERNS.get(connection.style.style, []))
        ctx.stroke_line(
            Point(source.x, source.y),
            Point(target.x, target.y),
            connection.style.color,
            connection.style.width,
        )
        ctx.set_line_dash([])

    def _render_node(self, node: Node, selected: bool) -> None:
        ctx = self.context
        style = node.style
        box = bounding_box(node, self.measurer)
        center = Point(node.x, node.y)
        if style.shape == "circle":
            radius = circle_radius(box)
            ctx.fill_circle(center, radius, style.background_color)
            ctx.stroke_circle(center, radius, style.border_color, style.border_width)
        elif style.shape == "diamond":
            points = diamond_points(node, box)
            ctx.fill_polygon(points, style.background_color)
            ctx.stroke_polygon(points, style.border_color, style.border_width)
        else:
            ctx.fill_rect(box, style.background_color)
            ctx.stroke_rect(box, style.border_color, style.border_width)
        if selected:
            ctx.set_line_dash(DASH_PATTERNS["dashed"])
            ctx.stroke_rect(box.inflate(SELECTION_MARGIN), SELECTION_COLOR, SELECTION_WIDTH)
            ctx.set_line_dash([])
        ctx.fill_text(node.text, center, style.text_color, font_for(style))


@dataclass
class _Cell:
    char: str = " "
    fg: Optional[str] = None
    bg: Optional[str] = None
    bold: bool = False


class CellCanvas:
    """A character-cell raster implementing ``DrawingContext``.

    Device pixels map onto cells of ``cell_width`` x ``cell_height``; text is
    always drawn one glyph per cell whatever the zoom.
    """

    def __init__(
        self,
        columns: int,
        rows: int,
        *,
        cell_width: float = CELL_WIDTH,
        cell_height: float = CELL_HEIGHT,
        background: str = CANVAS_BACKGROUND,
    ) -> None:
        self.cell_width = cell_width
        self.cell_height = cell_height
        self.background = background
        self.columns = max(columns, 0)
        self.rows = max(rows, 0)
        self._grid: list[list[_Cell]] = []
        self._transform = (0.0, 0.0, 1.0)
        self._stack: list[tuple[float, float, float]] = []
        self._dash: list[float] = []
        self.clear()

    # -- state -----------------------------------------------------------

    def resize(self, columns: int, rows: int) -> None:
        self.columns = max(columns, 0)
        self.rows = max(rows, 0)
        self.clear()

    def clear(self) -> None:
        self._grid = [[_Cell(bg=self.background) for _ in range(self.columns)] for _ in range(self.rows)]

    def save(self) -> None:
        self._stack.append(self._transform)

    def restore(self) -> None:
        if self._stack:
            self._transform = self._stack.pop()

    def translate(self, dx: float, dy: float) -> None:
        tx, ty, factor = self._transform
        self._transform = (tx + dx * factor, ty + dy * factor, factor)

    def scale(self, factor: float) -> None:
        tx, ty, current = self._transform
        self._transform = (tx, ty, current * factor)

    def set_line_dash(self, pattern: Sequence[float]) -> None:
        self._dash = [value for value in pattern if value > 0]

    # -- coordinate helpers ----------------------------------------------

    def device(self, point: Point) -> Point:
        tx, ty, factor = self._transform
        return Point(point.x * factor + tx, point.y * factor + ty)

    def cell_of(self, point: Point) -> tuple[int, int]:
        return self._device_cell(self.device(point))

    def _device_cell(self, device: Point) -> tuple[int, int]:
        return math.floor(device.x / self.cell_width), math.floor(device.y / self.cell_height)

    def _clamp_columns(self, left: int, right: int) -> range:
        # One cell of slack either side keeps off-grid outlines off-grid.
        return range(max(left, -1), min(right, self.columns) + 1)

    def _clamp_rows(self, top: int, bottom: int) -> range:
        return range(max(top, -1), min(bottom, self.rows) + 1)

    def _clip_segment(self, start: Point, end: Point) -> Optional[tuple[Point, Point]]:
        """Clip a device-space segment to the grid plus one cell of margin.

        Returns ``None`` when the segment misses the grid entirely.
        """
        left, top = -self.cell_width, -self.cell_height
        right = (self.columns + 1) * self.cell_width
        bottom = (self.rows + 1) * self.cell_height
        dx, dy = end.x - start.x, end.y - start.y
        t0, t1 = 0.0, 1.0
        for p, q in (
            (-dx, start.x - left),
            (dx, right - start.x),
            (-dy, start.y - top),
            (dy, bottom - start.y),
        ):
            if p == 0:
                if q < 0:
                    return None
                continue
            t = q / p
            if p < 0:
                if t > t1:
                    return None
                t0 = max(t0, t)
            else:
                if t < t0:
                    return None
                t1 = min(t1, t)
        first = Point(start.x + dx * t0, start.y + dy * t0)
        last = Point(start.x + dx * t1, start.y + dy * t1)
        return first, last

    def cell_center(self, column: int, row: int) -> Point:
        return Point((column + 0.5) * self.cell_width, (row + 0.5) * self.cell_height)

    def cell(self, column: int, row: int) -> Optional[_Cell]:
        if 0 <= row < self.rows and 0 <= column < self.columns:
            return self._grid[row][column]
        return None

    def _dash_on(self, travelled: float) -> bool:
        if not self._dash:
            return True
        _, _, factor = self._transform
        pattern = [value * factor for value in self._dash]
        if len(pattern) % 2:
            pattern = pattern * 2
        offset = travelled % sum(pattern)
        for index, length in enumerate(pattern):
            if offset < length:
                return index % 2 == 0
            offset -= length
        return True

    def _put(self, column: int, row: int, char: str, fg: Optional[str] = None, bg: Optional[str] = None) -> None:
        target = self.cell(column, row)
        if target is None:
            return
        target.char = char
        if fg is not None:
            target.fg = fg
        if bg is not None:
            target.bg = bg

    # -- drawing ---------------------------------------------------------

    def stroke_line(self, start: Point, end: Point, color: str, width: float) -> None:
        device_start = self.device(start)
        clipped = self._clip_segment(device_start, self.device(end))
        if clipped is None:
            return
        origin_column, origin_row = self._device_cell(device_start)
        c0, r0 = self._device_cell(clipped[0])
        c1, r1 = self._device_cell(clipped[1])
        # Dash phase counts from the unclipped start.
        skipped = math.hypot((c0 - origin_column) * self.cell_width, (r0 - origin_row) * self.cell_height)
        dx, dy = c1 - c0, r1 - r0
        steps = max(abs(dx), abs(dy))
        if steps == 0:
            self._put(c0, r0, "·", fg=color)
            return
        if dy == 0:
            glyph = "─"
        elif dx == 0:
            glyph = "│"
        elif abs(dx) >= 2 * abs(dy):
            glyph = "─"
        elif abs(dy) >= 2 * abs(dx):
            glyph = "│"
        else:
            glyph = "╲" if (dx > 0) == (dy > 0) else "╱"
        step_length = math.hypot(dx * self.cell_width, dy * self.cell_height) / steps
        for step in range(steps + 1):
            if not self._dash_on(skipped + step * step_length):
                continue
            column = c0 + round(dx * step / steps)
            row = r0 + round(dy * step / steps)
            self._put(column, row, glyph, fg=color)

    def _cell_span(self, rect: Rect) -> tuple[int, int, int, int]:
        left, top = self.cell_of(Point(rect.x, rect.y))
        right, bottom = self.cell_of(Point(rect.x + rect.width, rect.y + rect.height))
        return left, top, max(right, left), max(bottom, top)

    def fill_rect(self, rect: Rect, color: str) -> None:
        left, top, right, bottom = self._cell_span(rect)
        for row in self._clamp_rows(top, bottom):
            for column in self._clamp_columns(left, right):
                self._put(column, row, " ", bg=color)

    def stroke_rect(self, rect: Rect, color: str, width: float) -> None:
        left, top, right, bottom = self._cell_span(rect)
        dashed = bool(self._dash)
        horizontal = "╌" if dashed else "─"
        vertical = "╎" if dashed else "│"
        for column in self._clamp_columns(left + 1, right - 1):
            self._put(column, top, horizontal, fg=color)
            self._put(column, bottom, horizontal, fg=color)
        for row in self._clamp_rows(top + 1, bottom - 1):
            self._put(left, row, vertical, fg=color)
            self._put(right, row, vertical, fg=color)
        self._put(left, top, "┌", fg=color)
        self._put(right, top, "┐", fg=color)
        self._put(left, bottom, "└", fg=color)
        self._put(right, bottom, "┘", fg=color)

    def _device_radius(self, radius: float) -> float:
        _, _, factor = self._transform
        return radius * factor

    def _circle_cells(self, center: Point, radius: float):
        device_center = self.device(center)
        device_radius = self._device_radius(radius)
        left = math.floor((device_center.x - device_radius) / self.cell_width)
        right = math.floor((device_center.x + device_radius) / self.cell_width)
        top = math.floor((device_center.y - device_radius) / self.cell_height)
        bottom = math.floor((device_center.y + device_radius) / self.cell_height)
        for row in self._clamp_rows(top, bottom):
            for column in self._clamp_columns(left, right):
                middle = self.cell_center(column, row)
                gap = math.hypot(middle.x - device_center.x, middle.y - device_center.y)
                yield column, row, gap, device_radius

    def fill_circle(self, center: Point, radius: float, color: str) -> None:
        for column, row, gap, device_radius in self._circle_cells(center, radius):
            if gap <= device_radius:
                self._put(column, row, " ", bg=color)

    def stroke_circle(self, center: Point, radius: float, color: str, width: float) -> None:
        band = max(self.cell_width, self.cell_height) / 2
        for column, row, gap, device_radius in self._circle_cells(center, radius):
            if device_radius - band < gap <= device_radius:
                self._put(column, row, "•", fg=color)

    def fill_polygon(self, points: Sequence[Point], color: str) -> None:
        device_points = [self.device(point) for point in points]
        if len(device_points) < 3:
            return
        left = math.floor(min(p.x for p in device_points) / self.cell_width)
        right = math.floor(max(p.x for p in device_points) / self.cell_width)
        top = math.floor(min(p.y for p in device_points) / self.cell_height)
        bottom = math.floor(max(p.y for p in device_points) / self.cell_height)
        for row in self._clamp_rows(top, bottom):
            for column in self._clamp_columns(left, right):
                if _point_in_polygon(self.cell_center(column, row), device_points):
                    self._put(column, row, " ", bg=color)

    def stroke_polygon(self, points: Sequence[Point], color: str, width: float) -> None:
        for index, point in enumerate(points):
            self.stroke_line(point, points[(index + 1) % len(points)], color, width)

    def fill_text(self, text: str, center: Point, color: str, font: Font) -> None:
        column, row = self.cell_of(center)
        graphemes = _GRAPHEME_RE.findall(text)
        widths = [min(cell_len(grapheme), 2) for grapheme in graphemes]
        column -= sum(widths) // 2
        for grapheme, width in zip(graphemes, widths):
            if width == 0:
                continue
            target = self.cell(column, row)
            if target is not None:
                target.char = grapheme
                target.fg = color
                target.bold = font.weight == "bold"
                if width == 2:
                    spill = self.cell(column + 1, row)
                    if spill is not None:
                        spill.char = ""
            column += width

    # -- output ----------------------------------------------------------

    def to_text(self) -> Text:
        text = Text(no_wrap=True, overflow="crop")
        styles: dict[tuple[Optional[str], Optional[str], bool], Style] = {}
        for index, row in enumerate(self._grid):
            if index:
                text.append("\n")
            for cell in row:
                if cell.char == "":
                    continue
                key = (cell.fg, cell.bg, cell.bold)
                style = styles.get(key)
                if style is None:
                    style = Style(color=_safe_color(cell.fg), bgcolor=_safe_color(cell.bg), bold=cell.bold)
                    styles[key] = style
                text.append(cell.char, style)
        return text

    def plain_rows(self) -> list[str]:
        return ["".join(cell.char for cell in row) for row in self._grid]


def _safe_color(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        Color.parse(value)
    except ColorParseError:
        return None
    return value


def _point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    inside = False
    j = len(polygon) - 1
    for i, current in enumerate(polygon):
        previous = polygon[j]
        if (current.y > point.y) != (previous.y > point.y):
            crossing = (previous.x - current.x) * (point.y - current.y) / (previous.y - current.y) + current.x
            if point.x < crossing:
                inside = not inside
        j = i
    return inside
