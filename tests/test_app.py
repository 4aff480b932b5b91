"""End-to-end checks of the Textual app driven through a pilot."""

import asyncio
from unittest.mock import Mock

from textual.widgets import Input

from app import ContextMenuScreen, LoginScreen, MindmapApp, TextPromptScreen
from geometry import Point
from mindmap_io import export_filename
from node_models import MindMap


class FakeAuth:
    def __init__(self, token="tok", valid=True):
        self.token = token
        self.user = {"id": "u1", "name": "Ana"} if token else None
        self.valid = valid
        self.logged_out = False

    def verify(self):
        if not self.valid:
            self.logout()
        return self.valid

    def is_authenticated(self):
        return bool(self.token and self.user)

    def logout(self):
        self.token = None
        self.user = None
        self.logged_out = True


def make_app(auth=None, api=None):
    if api is None:
        api = Mock()
        api.save.return_value = MindMap(id="m1", title="Central Idea")
    return MindmapApp(auth=auth or FakeAuth(), api=api, autosave_seconds=3600)


async def drain(app):
    while app._tasks:
        await asyncio.gather(*list(app._tasks), return_exceptions=True)


async def test_canvas_shows_central_node():
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        assert not isinstance(app.screen, LoginScreen)
        assert app.store.node_count() == 1
        rows = app.require_canvas().cell_canvas.plain_rows()
        assert any("Central Idea" in row for row in rows)
        assert "Ana" in app.sub_title


async def test_missing_session_asks_for_login():
    app = make_app(auth=FakeAuth(token=None))
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        await pilot.pause()
        assert isinstance(app.screen, LoginScreen)
        await pilot.press("escape")
        await pilot.pause()
        assert not isinstance(app.screen, LoginScreen)
        assert "offline" in app.sub_title


async def test_tab_adds_child_and_delete_removes_it():
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        central = next(iter(app.store.nodes))
        app.controller.select(central)

        await pilot.press("tab")
        assert app.store.node_count() == 2
        child = app.controller.selected
        assert child.parent_id == central.id
        assert app.store.connection_count() == 1

        await pilot.press("delete")
        assert app.store.node_count() == 1
        assert app.store.connection_count() == 0


async def test_context_menu_delete():
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        app.controller.pointer_down(Point(400, 300), "secondary")
        await pilot.pause()
        assert isinstance(app.screen, ContextMenuScreen)

        await pilot.press("down", "enter")
        await pilot.pause()

        assert not isinstance(app.screen, ContextMenuScreen)
        assert app.store.is_empty()
        assert not app.controller.menu_open


async def test_enter_edits_selected_node():
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        central = next(iter(app.store.nodes))
        app.controller.select(central)

        await pilot.press("enter")
        await pilot.pause()
        assert isinstance(app.screen, TextPromptScreen)
        app.screen.query_one(Input).value = "Renamed"
        await pilot.press("enter")
        await pilot.pause()

        assert central.text == "Renamed"


async def test_save_goes_through_the_api():
    api = Mock()
    api.save.return_value = MindMap(id="m1", title="Central Idea")
    app = make_app(api=api)
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        await pilot.press("s")
        await drain(app)

        api.save.assert_called_once()
        assert api.save.call_args.args[0] is None
        assert app.persistence.current_id == "m1"


async def test_export_failure_is_reported_not_fatal(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / export_filename()).mkdir()
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        await pilot.press("x")
        await pilot.pause()

        assert app.is_running
        assert "Export failed" in app.sub_title
        assert app.store.node_count() == 1


async def test_outline_export_failure_is_reported_not_fatal(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / export_filename(suffix="md")).mkdir()
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        app.action_export_outline()
        await pilot.pause()

        assert app.is_running
        assert "Outline export failed" in app.sub_title


async def test_export_writes_document(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    app = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await drain(app)
        await pilot.press("x")
        await pilot.pause()

        assert (tmp_path / export_filename()).is_file()
        assert "Exported to" in app.sub_title
