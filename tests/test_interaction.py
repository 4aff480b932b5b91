"""Tests for the pointer/keyboard/touch state machine."""

import pytest

from geometry import Point
from graph_store import GraphStore
from interaction import CHILD_OFFSET, NEW_NODE_TEXT, InteractionController, State
from view_transform import ViewTransform


class RecordingHost:
    def __init__(self):
        self.renders = 0
        self.menus = []
        self.hidden = 0
        self.edits = []
        self.cursors = []

    def request_render(self):
        self.renders += 1

    def show_context_menu(self, anchor, node):
        self.menus.append((anchor, node.id))

    def hide_context_menu(self):
        self.hidden += 1

    def request_edit(self, node):
        self.edits.append(node.id)

    def set_cursor(self, cursor):
        self.cursors.append(cursor)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def setup(clock):
    store = GraphStore()
    view = ViewTransform()
    host = RecordingHost()
    controller = InteractionController(store, view, host, clock=clock)
    a = store.add_node("A", 100, 100)
    b = store.add_node("B", 400, 100)
    return controller, store, view, host, a, b


class TestPointer:
    def test_press_on_node_drags_it(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(110, 105))
        assert controller.state is State.DRAGGING_NODE
        assert controller.selected_id == a.id

        controller.pointer_move(Point(160, 125))
        assert (a.x, a.y) == (150, 120)

        controller.pointer_up()
        assert controller.state is State.IDLE
        assert controller.selected_id == a.id

    def test_drag_respects_zoom(self, setup):
        controller, store, view, host, a, b = setup
        view.scale = 2.0
        controller.pointer_down(Point(200, 200))
        controller.pointer_move(Point(220, 200))
        assert (a.x, a.y) == (110, 100)

    def test_press_on_empty_space_pans_and_deselects(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.pointer_down(Point(700, 700))
        assert controller.state is State.PANNING
        assert controller.selected_id is None

        controller.pointer_move(Point(710, 695))
        controller.pointer_move(Point(720, 690))
        assert view.pan == Point(20, -10)
        controller.pointer_up()
        assert controller.state is State.IDLE

    def test_wheel_zooms_around_pointer(self, setup):
        controller, store, view, host, a, b = setup
        controller.wheel(Point(50, 50), -1)
        assert view.scale == pytest.approx(1.1)
        assert view.pan_x == pytest.approx(-5)
        controller.wheel(Point(50, 50), 1)
        assert view.scale == pytest.approx(0.99)

    def test_wheel_is_ignored_while_dragging(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(100, 100))
        controller.wheel(Point(100, 100), -1)
        assert view.scale == 1.0

    def test_double_click_on_empty_space_adds_node(self, setup):
        controller, store, view, host, a, b = setup
        view.pan_by(Point(10, 20))
        node = controller.double_click(Point(610, 520))
        assert node is not None
        assert node.text == NEW_NODE_TEXT
        assert (node.x, node.y) == (600, 500)
        assert controller.selected_id == node.id

    def test_double_click_on_node_requests_edit(self, setup):
        controller, store, view, host, a, b = setup
        assert controller.double_click(Point(400, 100)) is None
        assert host.edits == [b.id]
        assert store.node_count() == 2


class TestConnecting:
    def test_connect_flow(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(100, 100))
        controller.pointer_up()
        controller.menu_action("connect")
        assert controller.state is State.CONNECTING_PENDING
        assert controller.pending_source_id == a.id
        assert host.cursors[-1] == "crosshair"

        controller.pointer_down(Point(400, 100))

        assert [(c.from_node_id, c.to_node_id) for c in store.connections] == [(a.id, b.id)]
        assert controller.state is State.IDLE
        assert controller.pending_source_id is None
        assert host.cursors[-1] == "default"

    def test_connect_press_on_empty_space_cancels(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.menu_action("connect")
        controller.pointer_down(Point(900, 900))
        assert store.connection_count() == 0
        assert controller.state is State.IDLE
        assert controller.pending_source_id is None

    def test_connect_to_self_is_ignored(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.menu_action("connect")
        controller.pointer_down(Point(100, 100))
        assert store.connection_count() == 0
        assert controller.state is State.IDLE

    def test_escape_cancels_pending_connection(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.menu_action("connect")
        assert controller.key("escape")
        assert controller.state is State.IDLE
        assert controller.pending_source_id is None
        assert controller.selected_id is None
        assert host.cursors[-1] == "default"

    def test_deleting_pending_source_ends_connect_mode(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.menu_action("connect")
        controller.delete_selected()
        assert controller.state is State.IDLE
        assert controller.pending_source_id is None


class TestContextMenu:
    def test_secondary_press_on_node_opens_menu(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(400, 100), "secondary")
        assert controller.menu_open
        assert host.menus == [(Point(400, 100), b.id)]
        assert controller.selected_id == b.id
        assert controller.state is State.IDLE

    def test_secondary_press_on_empty_space_only_deselects(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        controller.pointer_down(Point(900, 900), "secondary")
        assert not controller.menu_open
        assert host.menus == []
        assert controller.selected_id is None

    def test_primary_press_closes_menu(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(400, 100), "secondary")
        controller.pointer_down(Point(900, 900))
        assert not controller.menu_open
        assert host.hidden == 1

    def test_menu_edit_and_delete(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(100, 100), "secondary")
        controller.menu_action("edit")
        assert host.edits == [a.id]
        assert not controller.menu_open

        controller.pointer_down(Point(100, 100), "secondary")
        controller.menu_action("delete")
        assert store.get_node(a.id) is None
        assert controller.selected_id is None

    def test_menu_dismissed_by_ui_does_not_hide_again(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(400, 100), "secondary")
        controller.menu_dismissed("delete")
        assert host.hidden == 0
        assert not controller.menu_open
        assert store.get_node(b.id) is None

    def test_menu_dismissed_without_choice(self, setup):
        controller, store, view, host, a, b = setup
        controller.pointer_down(Point(400, 100), "secondary")
        controller.menu_dismissed(None)
        assert not controller.menu_open
        assert store.node_count() == 2


class TestKeyboardAndEditing:
    def test_delete_key_removes_selection(self, setup):
        controller, store, view, host, a, b = setup
        assert not controller.key("delete")
        controller.select(a)
        assert controller.key("delete")
        assert store.get_node(a.id) is None
        assert controller.selected_id is None

    def test_enter_requests_edit(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(b)
        assert controller.key("enter")
        assert host.edits == [b.id]

    def test_apply_edit_trims_and_ignores_empty(self, setup):
        controller, store, view, host, a, b = setup
        assert controller.apply_edit(a.id, "  Renamed  ")
        assert a.text == "Renamed"
        assert not controller.apply_edit(a.id, "   ")
        assert not controller.apply_edit(a.id, None)
        assert a.text == "Renamed"

    def test_add_child_links_to_selection(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        first = controller.add_child(Point(0, 0))
        controller.select(a)
        second = controller.add_child(Point(0, 0))

        assert first.parent_id == a.id
        assert (first.x, first.y) == (a.x + CHILD_OFFSET.x, a.y)
        assert (second.x, second.y) == (a.x + CHILD_OFFSET.x, a.y + CHILD_OFFSET.y)
        assert len(store.connections_for(a.id)) == 2
        assert controller.selected_id == second.id

    def test_add_child_without_selection_adds_free_node(self, setup):
        controller, store, view, host, a, b = setup
        node = controller.add_child(Point(640, 320))
        assert node.parent_id is None
        assert (node.x, node.y) == (640, 320)

    def test_cycle_style(self, setup):
        controller, store, view, host, a, b = setup
        assert not controller.cycle_style("shape")
        controller.select(a)
        assert controller.cycle_style("background")
        assert a.style.background_color == "#10b981"
        assert controller.cycle_style("shape")
        assert a.style.shape == "circle"
        assert controller.cycle_style("weight")
        assert a.style.font_weight == "bold"
        assert controller.cycle_style("text")
        assert a.style.text_color == "#111827"

    def test_stale_selection_is_cleared(self, setup):
        controller, store, view, host, a, b = setup
        controller.select(a)
        store.delete_node(a.id)
        assert controller.selected is None
        assert controller.selected_id is None


class TestTouch:
    def test_pinch_zooms_and_suspends_single_touch(self, setup):
        controller, store, view, host, a, b = setup
        controller.touch_start([Point(600, 600), Point(700, 600)])
        controller.touch_move([Point(550, 600), Point(750, 600)])
        assert view.scale == pytest.approx(2.0)

        scale = view.scale
        pan = view.pan
        controller.touch_end([Point(750, 600)])
        controller.touch_move([Point(800, 650)])
        assert view.pan == pan
        assert view.scale == scale

        controller.touch_end([])
        controller.touch_start([Point(600, 600)])
        assert controller.state is State.PANNING

    def test_single_touch_drags(self, setup):
        controller, store, view, host, a, b = setup
        controller.touch_start([Point(100, 100)])
        controller.touch_move([Point(130, 100)])
        controller.touch_end([])
        assert (a.x, a.y) == (130, 100)
        assert controller.state is State.IDLE

    def test_long_press_opens_menu(self, setup, clock):
        controller, store, view, host, a, b = setup
        controller.touch_start([Point(100, 100)])
        clock.now = 0.2
        assert not controller.long_press_check()
        clock.now = 0.6
        assert controller.long_press_check()
        assert host.menus == [(Point(100, 100), a.id)]
        assert controller.state is State.IDLE

    def test_long_press_cancelled_by_movement(self, setup, clock):
        controller, store, view, host, a, b = setup
        controller.touch_start([Point(100, 100)])
        controller.touch_move([Point(130, 100)])
        clock.now = 1.0
        assert not controller.long_press_check()
        assert host.menus == []


def test_reset_forgets_everything(setup):
    controller, store, view, host, a, b = setup
    controller.select(a)
    controller.menu_action("connect")
    controller.reset()
    assert controller.state is State.IDLE
    assert controller.selected_id is None
    assert controller.pending_source_id is None
    assert host.cursors[-1] == "default"
