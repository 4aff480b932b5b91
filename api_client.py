from __future__ import annotations

import json
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional
from urllib import error, request
from urllib.parse import quote

from node_models import Connection, MindMap, Node

DEFAULT_API_URL = "http://localhost:3000"
DEFAULT_TIMEOUT = 15.0
DEFAULT_AUTOSAVE_SECONDS = 30.0
MIN_PASSWORD_LENGTH = 6
_CONNECTION_LOG_PATH = Path("connection.log")
_connection_log_lock = threading.Lock()
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MINDMAP_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class MindmapError(Exception):
    """Base class for failures surfaced to the user as a status message."""

    status: Optional[int] = None

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        if status is not None:
            self.status = status


class ValidationError(MindmapError):
    status = 400


class NotFoundError(MindmapError):
    status = 404


class AuthError(MindmapError):
    status = 401


class TransientNetworkError(MindmapError):
    pass


def get_api_base_url() -> str:
    return os.getenv("MINDMAP_API_URL", DEFAULT_API_URL).rstrip("/")


def get_http_timeout() -> float:
    return _float_env("MINDMAP_HTTP_TIMEOUT", DEFAULT_TIMEOUT)


def get_autosave_seconds() -> float:
    return _float_env("MINDMAP_AUTOSAVE_SECONDS", DEFAULT_AUTOSAVE_SECONDS)


def get_auth_file() -> Path:
    configured = os.getenv("MINDMAP_AUTH_FILE")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".m1ndcanvas" / "auth.json"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def reset_connection_log() -> None:
    with _connection_log_lock:
        _CONNECTION_LOG_PATH.write_text("", encoding="utf-8")


def log_connection_event(status: str, target: str, detail: str | None = None) -> None:
    timestamp = datetime.now().isoformat(timespec="seconds")
    message = detail.strip() if detail else ""
    line = f"{timestamp}\t{status.upper()}\t{target}"
    if message:
        line = f"{line}\t{message}"
    with _connection_log_lock:
        with _CONNECTION_LOG_PATH.open("a", encoding="utf-8") as log:
            log.write(line + "\n")


def validate_email(email: str) -> str:
    cleaned = (email or "").strip()
    if not _EMAIL_RE.match(cleaned):
        raise ValidationError("Please enter a valid email address")
    return cleaned


def validate_password(password: str) -> str:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return password


def validate_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Please provide a title for the mind map")
    return cleaned


def validate_mindmap_id(mindmap_id: str) -> str:
    cleaned = (mindmap_id or "").strip()
    if not _MINDMAP_ID_RE.match(cleaned):
        raise ValidationError("Please provide a valid mind map ID")
    return cleaned


def _error_for_status(status: int, message: str) -> MindmapError:
    if status == 400:
        return ValidationError(message, status=status)
    if status == 404:
        return NotFoundError(message, status=status)
    if status in (401, 403, 409):
        return AuthError(message, status=status)
    return TransientNetworkError(message, status=status)


def _envelope_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


def _decode(raw: str) -> Any:
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TransientNetworkError(f"invalid JSON: {exc}") from exc


def request_json(
    method: str,
    path: str,
    body: Optional[dict[str, Any]] = None,
    *,
    token: Optional[str] = None,
    base_url: Optional[str] = None,
) -> Any:
    """Perform one JSON call and return the ``data`` of the response envelope.

    Responses are ``{success, data, error, message}``; a bare JSON body is
    returned as is. Failures raise the matching ``MindmapError`` subclass
    and are never retried.
    """
    url = f"{base_url or get_api_base_url()}{path}"
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    data = json.dumps(body).encode("utf-8") if body is not None else None
    http_request = request.Request(url, data=data, headers=headers, method=method)
    target = f"{method} {path}"
    try:
        with request.urlopen(http_request, timeout=get_http_timeout()) as response:
            status = getattr(response, "status", 200)
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raw_error = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        try:
            payload = json.loads(raw_error) if raw_error.strip() else None
        except json.JSONDecodeError:
            payload = None
        message = _envelope_message(payload, f"HTTP {exc.code}")
        log_connection_event("FAIL", target, f"{exc.code} {message}")
        raise _error_for_status(exc.code, message) from exc
    except (error.URLError, TimeoutError, OSError) as exc:
        reason = getattr(exc, "reason", exc)
        log_connection_event("FAIL", target, str(reason))
        raise TransientNetworkError(f"Network error: {reason}") from exc

    try:
        payload = _decode(raw)
    except TransientNetworkError as exc:
        log_connection_event("FAIL", target, str(exc))
        raise
    if not 200 <= status < 300:
        message = _envelope_message(payload, f"HTTP {status}")
        log_connection_event("FAIL", target, f"{status} {message}")
        raise _error_for_status(status, message)
    if isinstance(payload, dict) and "success" in payload:
        if not payload.get("success"):
            message = _envelope_message(payload, "Request failed")
            log_connection_event("FAIL", target, message)
            raise _error_for_status(status if status >= 400 else 400, message)
        log_connection_event("SUCCESS", target, str(status))
        return payload.get("data")
    log_connection_event("SUCCESS", target, str(status))
    return payload


class AuthService:
    """Bearer-token session persisted as ``{token, user}`` JSON."""

    def __init__(self, *, base_url: Optional[str] = None, auth_file: Optional[Path] = None) -> None:
        self.base_url = base_url
        self.auth_file = auth_file or get_auth_file()
        self.token: Optional[str] = None
        self.user: Optional[dict[str, Any]] = None
        self._load()

    def _load(self) -> None:
        if not self.auth_file.exists():
            return
        try:
            stored = json.loads(self.auth_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return
        if isinstance(stored, dict):
            token = stored.get("token")
            user = stored.get("user")
            self.token = token if isinstance(token, str) and token else None
            self.user = user if isinstance(user, dict) else None

    def _store(self) -> None:
        self.auth_file.parent.mkdir(parents=True, exist_ok=True)
        self.auth_file.write_text(json.dumps({"token": self.token, "user": self.user}), encoding="utf-8")

    def is_authenticated(self) -> bool:
        return bool(self.token and self.user)

    def auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def set_auth_data(self, user: dict[str, Any], token: str) -> None:
        self.user = user
        self.token = token
        self._store()

    def _accept(self, data: Any) -> dict[str, Any]:
        if not isinstance(data, dict) or not data.get("token") or not isinstance(data.get("user"), dict):
            raise TransientNetworkError("Unexpected authentication response")
        self.set_auth_data(data["user"], str(data["token"]))
        return data["user"]

    def signup(self, email: str, password: str, name: str) -> dict[str, Any]:
        if not (name or "").strip():
            raise ValidationError("Email, password, and name are required")
        payload = {
            "email": validate_email(email),
            "password": validate_password(password),
            "name": name.strip(),
        }
        return self._accept(request_json("POST", "/api/auth/signup", payload, base_url=self.base_url))

    def login(self, email: str, password: str) -> dict[str, Any]:
        if not password:
            raise ValidationError("Email and password are required")
        payload = {"email": validate_email(email), "password": password}
        return self._accept(request_json("POST", "/api/auth/login", payload, base_url=self.base_url))

    def verify(self) -> bool:
        """Ask the server who we are; any failure logs the session out."""
        if not self.token:
            return False
        try:
            data = request_json("GET", "/api/auth/me", token=self.token, base_url=self.base_url)
        except MindmapError as exc:
            log_connection_event("LOGOUT", "GET /api/auth/me", str(exc))
            self.logout()
            return False
        if not isinstance(data, dict):
            self.logout()
            return False
        self.user = data
        self._store()
        return True

    def logout(self) -> None:
        self.token = None
        self.user = None
        if self.auth_file.exists():
            self.auth_file.unlink()


class MindmapApiClient:
    """CRUD over ``/api/mindmaps`` with the caller's bearer token."""

    def __init__(self, auth: AuthService, *, base_url: Optional[str] = None) -> None:
        self.auth = auth
        self.base_url = base_url

    def _call(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        return request_json(method, path, body, token=self.auth.token, base_url=self.base_url)

    def list_mindmaps(self) -> list[MindMap]:
        data = self._call("GET", "/api/mindmaps")
        if not isinstance(data, list):
            raise TransientNetworkError("Unexpected mind map list response")
        return [self._mindmap(item) for item in data]

    def get_mindmap(self, mindmap_id: str) -> MindMap:
        path = f"/api/mindmaps/{quote(validate_mindmap_id(mindmap_id))}"
        return self._mindmap(self._call("GET", path))

    def create_mindmap(
        self,
        title: str,
        description: Optional[str] = None,
        nodes: Iterable[Node] = (),
        connections: Iterable[Connection] = (),
    ) -> MindMap:
        body = _mindmap_body(validate_title(title), description, nodes, connections)
        return self._mindmap(self._call("POST", "/api/mindmaps", body))

    def update_mindmap(
        self,
        mindmap_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        nodes: Optional[Iterable[Node]] = None,
        connections: Optional[Iterable[Connection]] = None,
    ) -> MindMap:
        path = f"/api/mindmaps/{quote(validate_mindmap_id(mindmap_id))}"
        body: dict[str, Any] = {}
        if title is not None:
            body["title"] = validate_title(title)
        if description is not None:
            body["description"] = description
        if nodes is not None:
            body["nodes"] = [node.to_dict() for node in nodes]
        if connections is not None:
            body["connections"] = [connection.to_dict() for connection in connections]
        return self._mindmap(self._call("PUT", path, body))

    def delete_mindmap(self, mindmap_id: str) -> None:
        self._call("DELETE", f"/api/mindmaps/{quote(validate_mindmap_id(mindmap_id))}")

    def save(
        self,
        mindmap_id: Optional[str],
        title: str,
        description: Optional[str],
        nodes: Iterable[Node],
        connections: Iterable[Connection],
    ) -> MindMap:
        """Create when ``mindmap_id`` is empty, otherwise update in place."""
        if mindmap_id:
            return self.update_mindmap(mindmap_id, title, description or "", list(nodes), list(connections))
        return self.create_mindmap(title, description, nodes, connections)

    @staticmethod
    def _mindmap(data: Any) -> MindMap:
        if not isinstance(data, dict):
            raise TransientNetworkError("Unexpected mind map response")
        try:
            return MindMap.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise TransientNetworkError(f"Malformed mind map: {exc}") from exc


def _mindmap_body(
    title: str,
    description: Optional[str],
    nodes: Iterable[Node],
    connections: Iterable[Connection],
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": title,
        "nodes": [node.to_dict() for node in nodes],
        "connections": [connection.to_dict() for connection in connections],
    }
    if description:
        body["description"] = description
    return body
