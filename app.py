from __future__ import annotations

import asyncio
from pathlib import Path
import sys
from typing import Awaitable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widget import Widget
from textual.widgets import Footer, Header, Input, OptionList, Static
from textual.widgets.option_list import Option
from rich.text import Text

import api_client
from api_client import AuthError, AuthService, MindmapApiClient, MindmapError
from geometry import Point
from graph_store import GraphStore
from interaction import InteractionController, State
from mindmap_io import export_document, export_filename, to_markdown, write_export
from node_models import MindMap, Node
from persistence import CENTRAL_NODE_POSITION, PersistenceClient
from render import CELL_HEIGHT, CELL_WIDTH, CellCanvas, Renderer
from view_transform import ViewTransform

PAN_STEP = 40.0


def _key_name_and_modifiers(key_value: str) -> tuple[str, set[str]]:
    parts = key_value.split("+")
    key_name = parts[-1].lower()
    modifiers = {part.lower() for part in parts[:-1] if part}
    return key_name, modifiers


class ContextMenuScreen(ModalScreen[str | None]):
    """Node actions, anchored where the menu was requested."""

    DEFAULT_CSS = """
    ContextMenuScreen {
        align: left top;
        background: transparent;
    }

    #context-menu-panel {
        width: 24;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 0 1;
    }

    #context-menu-title {
        text-style: bold;
        padding-bottom: 1;
    }

    #context-menu-list {
        border: none;
        background: $surface;
        height: auto;
    }

    #context-menu-list > .option-list--option-highlighted {
        background: $accent;
        color: $text;
        text-style: bold;
    }
    """

    ACTIONS = [("edit", "Edit text"), ("delete", "Delete"), ("connect", "Connect to…")]

    def __init__(self, label: str, offset: tuple[int, int]) -> None:
        super().__init__()
        self._label = label
        self._offset = offset

    def compose(self) -> ComposeResult:
        with Vertical(id="context-menu-panel"):
            yield Static(Text(self._label, overflow="ellipsis", no_wrap=True), id="context-menu-title")
            yield OptionList(
                *[Option(title, id=action) for action, title in self.ACTIONS],
                id="context-menu-list",
            )

    def on_mount(self) -> None:
        panel = self.query_one("#context-menu-panel", Vertical)
        panel.styles.offset = self._offset
        option_list = self.query_one("#context-menu-list", OptionList)
        option_list.focus()
        option_list.highlighted = 0

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        self.dismiss(event.option_id)

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)


class TextPromptScreen(ModalScreen[str | None]):
    """Single line prompt; Enter accepts, Escape cancels."""

    DEFAULT_CSS = """
    TextPromptScreen {
        align: center middle;
        background: transparent;
    }

    #text-prompt-panel {
        width: 64;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 1 2;
    }

    #text-prompt-title {
        text-style: bold;
        padding-bottom: 1;
    }
    """

    def __init__(self, title: str, initial_value: str = "", placeholder: str = "") -> None:
        super().__init__()
        self._title = title
        self._initial_value = initial_value
        self._placeholder = placeholder

    def compose(self) -> ComposeResult:
        with Vertical(id="text-prompt-panel"):
            yield Static(self._title, id="text-prompt-title")
            yield Input(value=self._initial_value, placeholder=self._placeholder, id="text-prompt-field")

    def on_mount(self) -> None:
        self.query_one("#text-prompt-field", Input).focus()

    def on_input_submitted(self, message: Input.Submitted) -> None:
        message.stop()
        self.dismiss(message.value)

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)


class NewMindmapScreen(ModalScreen[dict[str, str] | None]):
    """Title and description for a fresh mind map."""

    DEFAULT_CSS = """
    NewMindmapScreen {
        align: center middle;
    }

    #new-mindmap-panel {
        width: 64;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 1 2;
    }

    #new-mindmap-panel Input {
        margin-bottom: 1;
    }
    """

    def compose(self) -> ComposeResult:
        with Vertical(id="new-mindmap-panel"):
            yield Static("New mind map", classes="dialog-title")
            yield Input(placeholder="Title", id="new-mindmap-title")
            yield Input(placeholder="Description (optional)", id="new-mindmap-description")

    def on_mount(self) -> None:
        self.query_one("#new-mindmap-title", Input).focus()

    def on_input_submitted(self, message: Input.Submitted) -> None:
        message.stop()
        if message.input.id == "new-mindmap-title":
            self.query_one("#new-mindmap-description", Input).focus()
            return
        self.dismiss(
            {
                "title": self.query_one("#new-mindmap-title", Input).value,
                "description": self.query_one("#new-mindmap-description", Input).value,
            }
        )

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)


class LoadMindmapScreen(ModalScreen[dict[str, str] | None]):
    """Pick a saved mind map; ``d`` deletes the highlighted one."""

    DEFAULT_CSS = """
    LoadMindmapScreen {
        align: center middle;
    }

    #load-mindmap-panel {
        min-width: 50;
        max-width: 90;
        height: auto;
        max-height: 80%;
        background: $panel;
        border: round $secondary;
        padding: 1 2 2 2;
    }

    #load-mindmap-title {
        content-align: center middle;
        text-style: bold;
        padding-bottom: 1;
    }

    #load-mindmap-list {
        border: none;
        background: $surface;
        height: auto;
        max-height: 20;
    }

    #load-mindmap-list > .option-list--option-highlighted {
        background: $accent;
        color: $text;
        text-style: bold;
    }
    """

    def __init__(self, mindmaps: list[MindMap]) -> None:
        super().__init__()
        self._mindmaps = mindmaps

    @staticmethod
    def _option_label(mindmap: MindMap) -> Text:
        label = Text(mindmap.title or "(untitled)", style="bold")
        label.append(f"  {mindmap.description or 'No description'}", style="dim")
        label.append(f"  {mindmap.updated_at:%Y-%m-%d}", style="dim italic")
        return label

    def compose(self) -> ComposeResult:
        with Vertical(id="load-mindmap-panel"):
            yield Static("Load mind map", id="load-mindmap-title")
            if self._mindmaps:
                yield OptionList(
                    *[Option(self._option_label(mindmap), id=mindmap.id) for mindmap in self._mindmaps],
                    id="load-mindmap-list",
                )
            else:
                yield Static("No mind maps found", id="load-mindmap-empty")

    def on_mount(self) -> None:
        for option_list in self.query("#load-mindmap-list").results(OptionList):
            option_list.focus()
            option_list.highlighted = 0

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        if event.option_id:
            self.dismiss({"action": "load", "id": event.option_id})

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            event.stop()
            self.dismiss(None)
        elif event.key == "d":
            event.stop()
            for option_list in self.query("#load-mindmap-list").results(OptionList):
                if option_list.highlighted is None:
                    return
                option = option_list.get_option_at_index(option_list.highlighted)
                if option.id:
                    self.dismiss({"action": "delete", "id": option.id})


class LoginScreen(ModalScreen[dict[str, str] | None]):
    """Log in or sign up; F2 switches mode, Escape keeps working offline."""

    DEFAULT_CSS = """
    LoginScreen {
        align: center middle;
    }

    #login-panel {
        width: 60;
        height: auto;
        background: $panel;
        border: round $secondary;
        padding: 1 2;
    }

    #login-title {
        text-style: bold;
        padding-bottom: 1;
    }

    #login-message {
        color: $error;
    }

    #login-hint {
        color: $text-muted;
        padding-top: 1;
    }
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__()
        self._message = message or ""
        self._signup = False

    def compose(self) -> ComposeResult:
        with Vertical(id="login-panel"):
            yield Static("Log in", id="login-title")
            yield Static(self._message, id="login-message")
            yield Input(placeholder="Name", id="login-name")
            yield Input(placeholder="Email", id="login-email")
            yield Input(placeholder="Password", password=True, id="login-password")
            yield Static("Enter: submit · F2: sign up / log in · Esc: work offline", id="login-hint")

    def on_mount(self) -> None:
        self._apply_mode()

    def _apply_mode(self) -> None:
        self.query_one("#login-title", Static).update("Sign up" if self._signup else "Log in")
        self.query_one("#login-name", Input).display = self._signup
        first = "#login-name" if self._signup else "#login-email"
        self.query_one(first, Input).focus()

    def on_input_submitted(self, message: Input.Submitted) -> None:
        message.stop()
        fields = {
            "name": self.query_one("#login-name", Input).value,
            "email": self.query_one("#login-email", Input).value,
            "password": self.query_one("#login-password", Input).value,
        }
        required = ["name", "email", "password"] if self._signup else ["email", "password"]
        for key in required:
            if not fields[key]:
                self.query_one(f"#login-{key}", Input).focus()
                return
        self.dismiss({"action": "signup" if self._signup else "login", **fields})

    def on_key(self, event: events.Key) -> None:
        key_name, _ = _key_name_and_modifiers(event.key)
        if key_name == "escape":
            event.stop()
            self.dismiss(None)
        elif key_name == "f2":
            event.stop()
            self._signup = not self._signup
            self._apply_mode()


class MindmapCanvas(Widget, can_focus=True):
    """The drawing surface: forwards pointer input to the controller."""

    DEFAULT_CSS = """
    MindmapCanvas {
        width: 1fr;
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("delete", "delete_node", "(del)"),
        Binding("enter", "edit_node", "(edit)"),
        Binding("escape", "cancel", "Cancel", show=False),
        Binding("c", "connect", "(connect)"),
        Binding("tab", "add_child", "(child +)"),
        Binding("b", "cycle_style('background')", "Color"),
        Binding("t", "cycle_style('text')", "Text color", show=False),
        Binding("h", "cycle_style('shape')", "Shape"),
        Binding("w", "cycle_style('weight')", "Bold", show=False),
        Binding("+", "zoom(1.1)", "Zoom", show=False),
        Binding("-", "zoom(0.9)", "Zoom out", show=False),
        Binding("0", "reset_view", "Reset view", show=False),
        Binding("left", "pan(1, 0)", "Pan", show=False),
        Binding("right", "pan(-1, 0)", "Pan", show=False),
        Binding("up", "pan(0, 1)", "Pan", show=False),
        Binding("down", "pan(0, -1)", "Pan", show=False),
    ]

    def __init__(
        self,
        controller: InteractionController,
        *,
        id: str | None = None,
    ) -> None:
        super().__init__(id=id)
        self.controller = controller
        self.cell_canvas = CellCanvas(0, 0)
        self.renderer = Renderer(self.cell_canvas, controller.measurer)

    def render(self) -> Text:
        width, height = self.size.width, self.size.height
        if (width, height) != (self.cell_canvas.columns, self.cell_canvas.rows):
            self.cell_canvas.resize(width, height)
        self.renderer.render(
            self.controller.store.snapshot(),
            self.controller.view,
            self.controller.selected_id,
        )
        return self.cell_canvas.to_text()

    @staticmethod
    def screen_point(x: int, y: int) -> Point:
        return Point((x + 0.5) * CELL_WIDTH, (y + 0.5) * CELL_HEIGHT)

    def center_point(self) -> Point:
        return Point(self.size.width * CELL_WIDTH / 2, self.size.height * CELL_HEIGHT / 2)

    def on_mouse_down(self, event: events.MouseDown) -> None:
        event.stop()
        self.focus()
        point = self.screen_point(event.x, event.y)
        if event.button == 3 or (event.button == 1 and event.ctrl):
            self.controller.pointer_down(point, "secondary")
            return
        if event.button == 1:
            self.capture_mouse()
            self.controller.pointer_down(point)

    def on_mouse_move(self, event: events.MouseMove) -> None:
        if self.controller.state in (State.DRAGGING_NODE, State.PANNING):
            event.stop()
            self.controller.pointer_move(self.screen_point(event.x, event.y))

    def on_mouse_up(self, event: events.MouseUp) -> None:
        event.stop()
        self.release_mouse()
        self.controller.pointer_up()

    def on_click(self, event: events.Click) -> None:
        if event.chain == 2 and event.button == 1 and not event.ctrl:
            event.stop()
            self.controller.double_click(self.screen_point(event.x, event.y))

    def on_mouse_scroll_down(self, event: events.MouseScrollDown) -> None:
        event.stop()
        self.controller.wheel(self.screen_point(event.x, event.y), 1)

    def on_mouse_scroll_up(self, event: events.MouseScrollUp) -> None:
        event.stop()
        self.controller.wheel(self.screen_point(event.x, event.y), -1)

    def action_delete_node(self) -> None:
        if not self.controller.key("delete"):
            self.app.bell()

    def action_edit_node(self) -> None:
        if not self.controller.key("enter"):
            self.app.bell()

    def action_cancel(self) -> None:
        self.controller.key("escape")

    def action_connect(self) -> None:
        if self.controller.selected is None:
            self.app.bell()
            return
        self.controller.menu_action("connect")

    def action_add_child(self) -> None:
        self.controller.add_child(self.center_point())

    def action_cycle_style(self, kind: str) -> None:
        if not self.controller.cycle_style(kind):
            self.app.bell()

    def action_zoom(self, factor: float) -> None:
        self.controller.view.zoom_at(self.center_point(), factor)
        self.refresh()

    def action_reset_view(self) -> None:
        self.controller.view.reset()
        self.refresh()

    def action_pan(self, dx: int, dy: int) -> None:
        self.controller.view.pan_by(Point(dx * PAN_STEP, dy * PAN_STEP))
        self.refresh()


class MindmapApp(App[None]):
    """Textual user interface for the canvas mind map editor."""

    TITLE = "m1ndcanvas"

    CSS = """
    #mindmap-canvas {
        width: 1fr;
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", show=False),
        Binding("s", "save", "Save"),
        Binding("o", "open", "Open"),
        Binding("n", "new_mindmap", "New"),
        Binding("x", "export", "Export"),
        Binding("X", "export_outline", "Outline", show=False),
        Binding("L", "logout", "Logout", show=False),
    ]

    def __init__(
        self,
        initial_mindmap_id: str | None = None,
        *,
        auth: AuthService | None = None,
        api: MindmapApiClient | None = None,
        autosave_seconds: float | None = None,
    ) -> None:
        super().__init__()
        self.title = "m1ndcanvas"
        self.auth = auth or AuthService()
        self.api = api or MindmapApiClient(self.auth)
        self.store = GraphStore()
        self.view_transform = ViewTransform()
        self.controller = InteractionController(self.store, self.view_transform, self)
        self.persistence = PersistenceClient(self.api, self.store)
        self._autosave_seconds = autosave_seconds or api_client.get_autosave_seconds()
        self._initial_mindmap_id = initial_mindmap_id
        self._canvas: Optional[MindmapCanvas] = None
        self._menu_screen: Optional[ContextMenuScreen] = None
        self._cursor = "default"
        self._status_message: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        x, y = CENTRAL_NODE_POSITION
        self.store.add_node("Central Idea", x, y)

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        canvas = MindmapCanvas(self.controller, id="mindmap-canvas")
        self._canvas = canvas
        yield canvas
        yield Footer()

    def on_mount(self) -> None:
        api_client.reset_connection_log()
        self.set_interval(self._autosave_seconds, self._autosave_tick)
        self.require_canvas().focus()
        self.show_status()
        self._start_task(self._startup(), label="Startup")

    def require_canvas(self) -> MindmapCanvas:
        if self._canvas is None:
            raise RuntimeError("Canvas widget not initialised")
        return self._canvas

    # -- InteractionHost ---------------------------------------------------

    def request_render(self) -> None:
        if self._canvas is not None:
            self._canvas.refresh()
        self.show_status(self._status_message)

    def show_context_menu(self, anchor: Point, node: Node) -> None:
        canvas = self.require_canvas()
        offset = (
            canvas.region.x + int(anchor.x // CELL_WIDTH),
            canvas.region.y + int(anchor.y // CELL_HEIGHT),
        )
        menu = ContextMenuScreen(node.text, offset)
        self._menu_screen = menu
        self.push_screen(menu, self._on_menu_choice)

    def hide_context_menu(self) -> None:
        menu = self._menu_screen
        self._menu_screen = None
        if menu is not None and self.screen is menu:
            menu.dismiss(None)

    def request_edit(self, node: Node) -> None:
        node_id = node.id

        def apply_text(text: str | None) -> None:
            if not self.controller.apply_edit(node_id, text) and text is not None:
                self.show_status("Node text unchanged.")

        self.push_screen(TextPromptScreen("Edit node text", node.text), apply_text)

    def set_cursor(self, cursor: str) -> None:
        self._cursor = cursor
        if cursor == "crosshair":
            self.show_status("Connect: click the target node (Esc cancels).")
        else:
            self.show_status()

    def _on_menu_choice(self, choice: str | None) -> None:
        self._menu_screen = None
        self.controller.menu_dismissed(choice)

    # -- status ------------------------------------------------------------

    def show_status(self, message: str | None = None) -> None:
        self._status_message = message
        counts = f"{self.store.node_count()} nodes · {self.store.connection_count()} connections"
        composed = f"{counts} · {message}" if message else counts
        user = self.auth.user or {}
        who = user.get("name") or user.get("email") or "offline"
        self.sub_title = f"{composed} | Map: {self.persistence.document_title()} | {who}"

    def _report_error(self, label: str, exc: Exception) -> None:
        self.bell()
        self.show_status(f"{label} failed: {exc}")
        self.notify(str(exc), title=f"{label} failed", severity="error")
        if isinstance(exc, AuthError) and exc.status == 401:
            self.auth.logout()
            self._show_login("Your session has expired. Please log in again.")

    def _start_task(self, coro: Awaitable[None], *, label: str) -> None:
        task: asyncio.Task[None] = asyncio.create_task(coro)
        self._tasks.add(task)

        def _on_done(completed: asyncio.Task[None]) -> None:
            self._tasks.discard(completed)
            if completed.cancelled():
                return
            exc = completed.exception()
            if exc is not None:
                self._report_error(label, exc)

        task.add_done_callback(_on_done)

    # -- session -----------------------------------------------------------

    async def _startup(self) -> None:
        if self.auth.token and await asyncio.to_thread(self.auth.verify):
            user = self.auth.user or {}
            self.show_status(f"Welcome, {user.get('name', 'back')}!")
            if self._initial_mindmap_id:
                await self._load(self._initial_mindmap_id)
            return
        self._show_login()

    def _show_login(self, message: str | None = None) -> None:
        if isinstance(self.screen, LoginScreen):
            return
        self.push_screen(LoginScreen(message), self._on_login_result)

    def _on_login_result(self, result: dict[str, str] | None) -> None:
        if result is None:
            self.show_status("Working offline; log in (L) to save.")
            return
        self._start_task(self._authenticate(result), label="Login")

    async def _authenticate(self, result: dict[str, str]) -> None:
        try:
            if result.get("action") == "signup":
                user = await asyncio.to_thread(
                    self.auth.signup, result["email"], result["password"], result["name"]
                )
            else:
                user = await asyncio.to_thread(self.auth.login, result["email"], result["password"])
        except MindmapError as exc:
            self.bell()
            self.show_status(f"Login failed: {exc}")
            self._show_login(str(exc))
            return
        self.show_status(f"Welcome, {user.get('name', user.get('email', ''))}!")
        if self._initial_mindmap_id:
            await self._load(self._initial_mindmap_id)
            self._initial_mindmap_id = None

    async def _save(self) -> None:
        self.show_status("Saving…")
        try:
            saved = await self.persistence.save()
        except MindmapError as exc:
            self._report_error("Save", exc)
            return
        self.show_status(f"Saved {saved.title}.")
        self.notify("Mind map saved successfully")

    async def _autosave(self) -> None:
        try:
            saved = await self.persistence.autosave()
        except MindmapError as exc:
            self._report_error("Auto-save", exc)
            return
        if saved is not None:
            self.show_status(f"Auto-saved {saved.title}.")

    def _autosave_tick(self) -> None:
        if not self.auth.is_authenticated() or self.persistence.saving or self.store.is_empty():
            return
        self._start_task(self._autosave(), label="Auto-save")

    async def _load(self, mindmap_id: str) -> None:
        self.show_status("Loading…")
        try:
            mindmap, report = await self.persistence.load(mindmap_id)
        except MindmapError as exc:
            self._report_error("Load", exc)
            return
        self.view_transform.reset()
        self.controller.reset()
        if report.clean:
            self.show_status(f"Loaded {mindmap.title}.")
        else:
            self.show_status(f"Loaded {mindmap.title}; dropped {report.describe()}.")
        self.notify("Mind map loaded successfully")

    async def _delete(self, mindmap_id: str) -> None:
        try:
            await self.persistence.delete(mindmap_id)
        except MindmapError as exc:
            self._report_error("Delete", exc)
            return
        self.show_status("Mind map deleted.")

    async def _choose_mindmap(self) -> None:
        self.show_status("Fetching mind maps…")
        try:
            mindmaps = await self.persistence.list_mindmaps()
        except MindmapError as exc:
            self._report_error("Loading mind maps", exc)
            return
        self.show_status()

        def apply_choice(choice: dict[str, str] | None) -> None:
            if choice is None:
                return
            if choice["action"] == "delete":
                self._start_task(self._delete(choice["id"]), label="Delete")
            else:
                self._start_task(self._load(choice["id"]), label="Load")

        self.push_screen(LoadMindmapScreen(mindmaps), apply_choice)

    # -- actions -----------------------------------------------------------

    def action_save(self) -> None:
        if self.store.is_empty():
            self.bell()
            self.show_status("Nothing to save.")
            return
        if not self.auth.is_authenticated():
            self._show_login("Log in to save your mind map.")
            return
        self._start_task(self._save(), label="Save")

    def action_open(self) -> None:
        self._start_task(self._choose_mindmap(), label="Open")

    def action_new_mindmap(self) -> None:
        def create(result: dict[str, str] | None) -> None:
            if result is None:
                return
            try:
                self.persistence.new_mind_map(result["title"], result.get("description", ""))
            except MindmapError as exc:
                self._report_error("New mind map", exc)
                return
            self.view_transform.reset()
            self.controller.reset()
            self.show_status("New mind map created.")
            self.notify("New mind map created")

        self.push_screen(NewMindmapScreen(), create)

    def action_export(self) -> None:
        document = export_document(
            self.persistence.document_title(),
            self.persistence.description,
            self.store.snapshot(),
        )
        try:
            path = write_export(document)
        except OSError as exc:
            self._report_error("Export", exc)
            return
        self.show_status(f"Exported to {path}")
        self.notify("Mind map exported successfully")

    def action_export_outline(self) -> None:
        path = Path(export_filename(suffix="md"))
        outline = to_markdown(self.persistence.document_title(), self.store.snapshot())
        try:
            path.write_text(outline, encoding="utf-8")
        except OSError as exc:
            self._report_error("Outline export", exc)
            return
        self.show_status(f"Outline written to {path}")

    def action_logout(self) -> None:
        self.auth.logout()
        self.show_status("Logged out.")
        self._show_login()


def main() -> None:
    initial_id = sys.argv[1] if len(sys.argv) > 1 else None
    MindmapApp(initial_id).run()


if __name__ == "__main__":
    main()
