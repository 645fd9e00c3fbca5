"""
Shared test fixtures and configuration.
"""

import io
import os
import textwrap
import urllib.error
from pathlib import Path

import pytest

from devbox.adapters.mock import MockInstaller
from devbox.adapters.registry import InstallerRegistry
from devbox.core.context import SessionContext
from devbox.core.models.step import Step
from devbox.core.services.install import InstallerExecutor


@pytest.fixture
def ctx(tmp_path: Path) -> SessionContext:
    """A session context confined to tmp_path, never elevated."""
    home = tmp_path / "home"
    bin_dir = tmp_path / "bin"
    home.mkdir()
    bin_dir.mkdir()
    return SessionContext(
        target_user="dev",
        home=home,
        workspace=tmp_path / "projects",
        arch="amd64",
        machine="x86_64",
        is_root=False,
        can_elevate=False,
        search_path=str(bin_dir),
        scratch_root=tmp_path / "scratch",
    )


@pytest.fixture
def bin_dir(ctx: SessionContext) -> Path:
    """The only directory on the test search path."""
    return Path(ctx.search_path)


def make_binary(directory: Path, name: str) -> Path:
    """Create an executable stub named ``name``."""
    path = directory / name
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def binary_maker(bin_dir: Path):
    """Returns a function that puts a fake executable on the search path."""
    return lambda name: make_binary(bin_dir, name)


def step(name: str, phase: int = 1, binary: str | None = None, **fields) -> Step:
    """A packages step whose presence is ``binary`` on the search path."""
    data = {
        "name": name,
        "phase": phase,
        "presence": {"kind": "binary", "name": binary or name},
        "install": {"mode": "packages", "packages": [name]},
        "needs_sudo": True,
    }
    data.update(fields)
    return Step.model_validate(data)


@pytest.fixture
def step_factory():
    return step


@pytest.fixture
def mock_installer(bin_dir: Path) -> MockInstaller:
    """Mock installer that 'installs' a step by creating its presence binary."""

    def _install(request):
        presence = request.step.presence
        if presence.kind == "binary":
            make_binary(bin_dir, presence.name)

    return MockInstaller(on_install=_install)


@pytest.fixture
def mock_executor(ctx: SessionContext, mock_installer: MockInstaller) -> InstallerExecutor:
    return InstallerExecutor(ctx, registry=InstallerRegistry(mock_installer=mock_installer))


# ── Fake network ────────────────────────────────────────────────


class FakeResponse(io.BytesIO):
    """Minimal stand-in for an ``http.client.HTTPResponse``."""

    def __init__(self, body: bytes, url: str):
        super().__init__(body)
        self._url = url

    def geturl(self) -> str:
        return self._url


class FakeOpener:
    """URL opener serving canned bodies; records every request."""

    def __init__(self, routes: dict | None = None):
        self.routes = dict(routes or {})
        self.requests: list[str] = []

    def add(self, url: str, body, final_url: str | None = None) -> None:
        self.routes[url] = (body, final_url or url)

    def open(self, req, timeout=None):
        url = req.full_url
        self.requests.append(url)
        if url not in self.routes:
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, None)
        body, final_url = self.routes[url]
        if isinstance(body, Exception):
            raise body
        return FakeResponse(body, final_url)


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def catalog_writer(tmp_path: Path):
    """Returns a function writing dedented YAML to a catalog file."""

    def _write(content: str, name: str = "catalog.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep the developer's DEVBOX_* settings out of tests."""
    for key in list(os.environ):
        if key.startswith("DEVBOX_"):
            monkeypatch.delenv(key, raising=False)
