import pytest

import api_client


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the connection log and stored session inside the test's tmp dir."""
    monkeypatch.setattr(api_client, "_CONNECTION_LOG_PATH", tmp_path / "connection.log")
    monkeypatch.setenv("MINDMAP_AUTH_FILE", str(tmp_path / "auth.json"))
    monkeypatch.setenv("MINDMAP_API_URL", "http://api.test")
    monkeypatch.delenv("MINDMAP_AUTOSAVE_SECONDS", raising=False)
    monkeypatch.delenv("MINDMAP_HTTP_TIMEOUT", raising=False)
    return tmp_path
