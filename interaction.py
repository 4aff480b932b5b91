from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional, Protocol, Sequence

from geometry import DEFAULT_MEASURER, Point, TextMeasurer, distance, midpoint, node_at
from graph_store import GraphStore
from node_models import SHAPES, Node
from view_transform import ViewTransform

LONG_PRESS_SECONDS = 0.5
LONG_PRESS_SLOP = 10.0
WHEEL_ZOOM_OUT = 0.9
WHEEL_ZOOM_IN = 1.1
NEW_NODE_TEXT = "New Idea"
CHILD_OFFSET = Point(180, 90)

BACKGROUND_PALETTE = ["#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6", "#64748b"]
TEXT_PALETTE = ["#ffffff", "#111827", "#fde68a"]

Button = Literal["primary", "secondary"]
MenuAction = Literal["edit", "delete", "connect"]
StyleKind = Literal["background", "text", "shape", "weight"]


class State(enum.Enum):
    IDLE = "idle"
    DRAGGING_NODE = "dragging_node"
    PANNING = "panning"
    CONNECTING_PENDING = "connecting_pending"


class InteractionHost(Protocol):
    """What the controller needs from the surrounding UI."""

    def request_render(self) -> None: ...

    def show_context_menu(self, anchor: Point, node: Node) -> None: ...

    def hide_context_menu(self) -> None: ...

    def request_edit(self, node: Node) -> None: ...

    def set_cursor(self, cursor: str) -> None: ...


@dataclass
class _PressCandidate:
    point: Point
    started: float
    moved: bool = False


class InteractionController:
    """Pointer, wheel, touch and key state machine over a graph and a view.

    Gestures that make no sense (connecting a node to itself, deleting a
    node that is gone) quietly do nothing.
    """

    def __init__(
        self,
        store: GraphStore,
        view: ViewTransform,
        host: InteractionHost,
        *,
        measurer: TextMeasurer = DEFAULT_MEASURER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.view = view
        self.host = host
        self.measurer = measurer
        self._clock = clock
        self.state = State.IDLE
        self.selected_id: Optional[str] = None
        self.pending_source_id: Optional[str] = None
        self.menu_open = False
        self._drag_offset = Point(0.0, 0.0)
        self._last_pan_point = Point(0.0, 0.0)
        self._pinch_distance: Optional[float] = None
        self._pinch_center: Optional[Point] = None
        self._touch_suspended = False
        self._press_candidate: Optional[_PressCandidate] = None

    # -- selection -------------------------------------------------------

    @property
    def selected(self) -> Optional[Node]:
        node = self.store.get_node(self.selected_id)
        if node is None:
            self.selected_id = None
        return node

    def select(self, node: Optional[Node]) -> None:
        self.selected_id = node.id if node is not None else None
        self.host.request_render()

    def deselect(self) -> None:
        self.select(None)

    def node_at_screen(self, screen: Point) -> Optional[Node]:
        return node_at(self.view.to_model(screen), self.store.nodes, self.measurer)

    # -- pointer ---------------------------------------------------------

    def pointer_down(self, screen: Point, button: Button = "primary") -> None:
        if button == "secondary":
            self._open_menu_at(screen)
            return
        if self.menu_open:
            self.close_menu()
        hit = self.node_at_screen(screen)
        if self.state is State.CONNECTING_PENDING:
            self._complete_connection(hit)
            return
        if hit is not None:
            model = self.view.to_model(screen)
            self._drag_offset = Point(model.x - hit.x, model.y - hit.y)
            self.state = State.DRAGGING_NODE
            self.select(hit)
            return
        self.state = State.PANNING
        self._last_pan_point = screen
        self.deselect()

    def pointer_move(self, screen: Point) -> None:
        if self.state is State.DRAGGING_NODE:
            node = self.selected
            if node is None:
                self.state = State.IDLE
                return
            model = self.view.to_model(screen)
            self.store.move_node(node.id, model.x - self._drag_offset.x, model.y - self._drag_offset.y)
            self.host.request_render()
        elif self.state is State.PANNING:
            delta = Point(screen.x - self._last_pan_point.x, screen.y - self._last_pan_point.y)
            self.view.pan_by(delta)
            self._last_pan_point = screen
            self.host.request_render()

    def pointer_up(self) -> None:
        if self.state in (State.DRAGGING_NODE, State.PANNING):
            self.state = State.IDLE

    def wheel(self, screen: Point, delta_y: float) -> None:
        if self.state is State.DRAGGING_NODE or delta_y == 0:
            return
        factor = WHEEL_ZOOM_OUT if delta_y > 0 else WHEEL_ZOOM_IN
        self.view.zoom_at(screen, factor)
        self.host.request_render()

    def double_click(self, screen: Point) -> Optional[Node]:
        """Add a node on empty canvas, or edit the node under the pointer."""
        if self.state is State.CONNECTING_PENDING:
            return None
        hit = self.node_at_screen(screen)
        if hit is not None:
            self.select(hit)
            self.host.request_edit(hit)
            return None
        self.state = State.IDLE
        return self.add_node_at(screen)

    # -- touch -----------------------------------------------------------

    def touch_start(self, touches: Sequence[Point]) -> None:
        if len(touches) >= 2:
            self._begin_pinch(touches[0], touches[1])
            return
        if len(touches) == 1 and not self._touch_suspended:
            self._press_candidate = _PressCandidate(touches[0], self._clock())
            self.pointer_down(touches[0])

    def touch_move(self, touches: Sequence[Point]) -> None:
        if len(touches) >= 2:
            if self._pinch_distance is None:
                self._begin_pinch(touches[0], touches[1])
                return
            current_distance = distance(touches[0], touches[1])
            current_center = midpoint(touches[0], touches[1])
            if self._pinch_distance > 0 and current_distance > 0:
                self.view.zoom_at(current_center, current_distance / self._pinch_distance)
                self.host.request_render()
            self._pinch_distance = current_distance
            self._pinch_center = current_center
            return
        if len(touches) == 1 and not self._touch_suspended:
            candidate = self._press_candidate
            if candidate and distance(candidate.point, touches[0]) > LONG_PRESS_SLOP:
                candidate.moved = True
            self.pointer_move(touches[0])

    def touch_end(self, remaining: Sequence[Point]) -> None:
        if len(remaining) < 2:
            self._pinch_distance = None
            self._pinch_center = None
        if not remaining:
            self._touch_suspended = False
            self._press_candidate = None
            self.pointer_up()

    def long_press_check(self) -> bool:
        """Open the context menu when the current touch has been held still."""
        candidate = self._press_candidate
        if candidate is None or candidate.moved or self._touch_suspended:
            return False
        if self._clock() - candidate.started < LONG_PRESS_SECONDS:
            return False
        self._press_candidate = None
        if self.state is State.DRAGGING_NODE:
            self.state = State.IDLE
        return self._open_menu_at(candidate.point)

    def _begin_pinch(self, first: Point, second: Point) -> None:
        if self.state in (State.DRAGGING_NODE, State.PANNING):
            self.state = State.IDLE
        self._touch_suspended = True
        self._press_candidate = None
        self._pinch_distance = distance(first, second)
        self._pinch_center = midpoint(first, second)

    # -- keyboard --------------------------------------------------------

    def key(self, name: str) -> bool:
        """Handle ``delete``, ``escape`` and ``enter``; return whether consumed."""
        if name == "escape":
            self.cancel()
            return True
        node = self.selected
        if name == "delete" and node is not None:
            self.delete_selected()
            return True
        if name == "enter" and node is not None:
            self.host.request_edit(node)
            return True
        return False

    def cancel(self) -> None:
        self.close_menu()
        if self.state is State.CONNECTING_PENDING:
            self.host.set_cursor("default")
        self.pending_source_id = None
        self.state = State.IDLE
        self.deselect()

    # -- context menu ----------------------------------------------------

    def _open_menu_at(self, screen: Point) -> bool:
        hit = self.node_at_screen(screen)
        if hit is None:
            self.close_menu()
            self.deselect()
            return False
        self.select(hit)
        self.menu_open = True
        self.host.show_context_menu(screen, hit)
        return True

    def close_menu(self) -> None:
        if self.menu_open:
            self.menu_open = False
            self.host.hide_context_menu()

    def menu_dismissed(self, action: Optional[str]) -> None:
        """The UI closed the menu itself, with the chosen action or ``None``."""
        self.menu_open = False
        self.menu_action(action)

    def menu_action(self, action: Optional[str]) -> None:
        self.close_menu()
        node = self.selected
        if node is None or action is None:
            return
        if action == "edit":
            self.host.request_edit(node)
        elif action == "delete":
            self.delete_selected()
        elif action == "connect":
            self.pending_source_id = node.id
            self.state = State.CONNECTING_PENDING
            self.host.set_cursor("crosshair")

    def _complete_connection(self, target: Optional[Node]) -> None:
        source_id = self.pending_source_id
        if source_id is not None and target is not None:
            self.store.add_connection(source_id, target.id)
        self.pending_source_id = None
        self.state = State.IDLE
        self.host.set_cursor("default")
        self.host.request_render()

    # -- editing ---------------------------------------------------------

    def apply_edit(self, node_id: str, text: Optional[str]) -> bool:
        if text is None or not text.strip():
            return False
        changed = self.store.update_node_text(node_id, text.strip())
        if changed:
            self.host.request_render()
        return changed

    def delete_selected(self) -> list[str]:
        node = self.selected
        if node is None:
            return []
        removed = self.store.delete_node(node.id)
        if self.pending_source_id in removed:
            self.pending_source_id = None
            if self.state is State.CONNECTING_PENDING:
                self.state = State.IDLE
                self.host.set_cursor("default")
        self.deselect()
        return removed

    def add_node_at(self, screen: Point, text: str = NEW_NODE_TEXT) -> Node:
        model = self.view.to_model(screen)
        node = self.store.add_node(text, model.x, model.y)
        self.select(node)
        return node

    def add_child(self, fallback_screen: Point, text: str = NEW_NODE_TEXT) -> Node:
        """Add a node under the selection, linked to it, or a free node."""
        parent = self.selected
        if parent is None:
            return self.add_node_at(fallback_screen, text)
        siblings = sum(1 for node in self.store.nodes if node.parent_id == parent.id)
        child = self.store.add_node(
            text,
            parent.x + CHILD_OFFSET.x,
            parent.y + CHILD_OFFSET.y * siblings,
            parent_id=parent.id,
        )
        self.store.add_connection(parent.id, child.id)
        self.select(child)
        return child

    def cycle_style(self, kind: StyleKind) -> bool:
        node = self.selected
        if node is None:
            return False
        if kind == "background":
            changed = self.store.update_node_style(
                node.id, "backgroundColor", _next_in(BACKGROUND_PALETTE, node.style.background_color)
            )
        elif kind == "text":
            changed = self.store.update_node_style(
                node.id, "textColor", _next_in(TEXT_PALETTE, node.style.text_color)
            )
        elif kind == "shape":
            changed = self.store.update_node_style(node.id, "shape", _next_in(list(SHAPES), node.style.shape))
        else:
            weight = "normal" if node.style.font_weight == "bold" else "bold"
            changed = self.store.update_node_style(node.id, "fontWeight", weight)
        if changed:
            self.host.request_render()
        return changed

    def reset(self) -> None:
        """Forget every gesture; used after the graph is replaced wholesale."""
        self.close_menu()
        if self.state is State.CONNECTING_PENDING:
            self.host.set_cursor("default")
        self.state = State.IDLE
        self.pending_source_id = None
        self.selected_id = None
        self._pinch_distance = None
        self._pinch_center = None
        self._touch_suspended = False
        self._press_candidate = None
        self.host.request_render()


def _next_in(palette: list[str], current: str) -> str:
    try:
        index = palette.index(current)
    except ValueError:
        return palette[0]
    return palette[(index + 1) % len(palette)]
