"""
Pytest configuration and shared fixtures for the orchestrator tests.

This file contains:
- FakeBackend: an aiohttp app standing in for the backend's HTTP API
- Executable stand-ins for the backend binary and the deploy command
"""

import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell scripts")


class FakeBackend:
    """Records control-plane requests and answers with configurable statuses."""

    def __init__(self):
        self.version_status = 200
        self.env_status = 200
        self.function_results: Dict[str, Any] = {}
        self.function_errors: Set[str] = set()
        # Bodies returned verbatim with a 200, bypassing the JSON envelope
        self.function_raw: Dict[str, str] = {}
        self.requests: List[Dict[str, Any]] = []
        # Checked when a request arrives, to observe ordering against deploys
        self.marker: Optional[Path] = None
        self.server: Optional[TestServer] = None

    @property
    def port(self) -> int:
        return self.server.port

    def _record(self, kind: str, request: web.Request, body: Any) -> None:
        self.requests.append({
            "kind": kind,
            "path": request.path,
            "headers": dict(request.headers),
            "body": body,
            "deployed": self.marker.exists() if self.marker else None,
        })

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["kind"] == kind]

    async def version(self, request: web.Request) -> web.Response:
        return web.Response(status=self.version_status, text="unknown")

    async def update_env(self, request: web.Request) -> web.Response:
        body = await request.json()
        self._record("env", request, body)
        if self.env_status != 200:
            return web.Response(status=self.env_status, text="env rejected")
        return web.json_response({})

    async def function(self, request: web.Request) -> web.Response:
        body = await request.json()
        self._record("function", request, body)
        if body["path"] in self.function_errors:
            return web.Response(status=400, text=f"{body['path']} failed")
        if body["path"] in self.function_raw:
            return web.Response(text=self.function_raw[body["path"]])
        return web.json_response({
            "status": "success",
            "value": self.function_results.get(body["path"]),
        })

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/version", self.version)
        app.router.add_post("/api/v1/update_environment_variables", self.update_env)
        app.router.add_post("/api/function", self.function)
        return app


@pytest_asyncio.fixture
async def fake_backend():
    backend = FakeBackend()
    backend.server = TestServer(backend.app(), host="127.0.0.1")
    await backend.server.start_server()
    yield backend
    await backend.server.close()


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script."""
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def backend_binary(tmp_path):
    """A 'backend' that records its argv and cwd, then idles."""
    args_file = tmp_path / "backend-args.txt"
    script = write_script(
        tmp_path / "fake-backend",
        f"""\
        echo "$@" > "{args_file}"
        pwd >> "{args_file}"
        exec sleep 30
        """,
    )
    return script


@pytest.fixture
def deploy_script(tmp_path):
    """A deploy command that touches a marker file and echoes its arguments."""
    marker = tmp_path / "deployed"
    script = write_script(
        tmp_path / "fake-deploy",
        f"""\
        touch "{marker}"
        echo "deploy $@"
        """,
    )
    return script, marker


@pytest.fixture(autouse=True)
def isolated_binary_cache(tmp_path, monkeypatch):
    """Keep BinaryConfig defaults away from the real home directory."""
    monkeypatch.setenv("LOCAL_BACKEND_BINARY_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    yield


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True
