import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "API"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import mp  # noqa: E402
from _fakes import FakeSession  # noqa: E402


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Isolated HOME/CWD with credentials and a project id in the environment."""
    for k in [
        "MP_PROJECT_ID",
        "MP_REGION",
        "MP_SERVICE_ACCOUNT",
        "MP_SERVICE_SECRET",
        "MP_TOKEN",
        "MP_DEBUG",
        "MP_QUIET",
    ]:
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MP_TOKEN", "svc-user:svc-secret")
    monkeypatch.setenv("MP_PROJECT_ID", "123")
    return tmp_path


@pytest.fixture
def fake_http(monkeypatch):
    """Install a FakeSession behind every `requests.Session()` the client creates."""

    def install(responses=None, handler=None) -> FakeSession:
        session = FakeSession(responses=responses, handler=handler)
        monkeypatch.setattr(mp.requests, "Session", lambda: session)
        return session

    return install
