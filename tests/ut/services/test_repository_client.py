"""包仓库客户端测试"""

from __future__ import annotations

import io
import json
import urllib.error
from typing import Any

import pytest

from archpkg.core.exceptions import RepositoryError, ValidationError
from archpkg.core.models import VersionRequest
from archpkg.services import repository as repomod
from archpkg.services.repository import RepositoryClient


class _Resp:
    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self._body = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> _Resp:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


class _FakeServer:
    """按 URL 路径返回预设响应，并记录请求"""

    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = routes
        self.requests: list[Any] = []

    def __call__(self, req: Any, timeout: int = 60, context: Any = None) -> _Resp:
        self.requests.append(req)
        path = req.full_url.split("://", 1)[1].split("/", 1)[1]
        result = self.routes["/" + path]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture()
def server(monkeypatch: pytest.MonkeyPatch) -> _FakeServer:
    fake = _FakeServer({
        "/session/guest/token": _Resp(201, {"token": "t0k"}),
        "/repo/download/pkg.a@%5E1.0.0": _Resp(200, {"version": "1.2.0", "source": "https://cdn/a.tgz"}),
        "/repo/download/pkg.core": _Resp(200, {"version": "3.0.0", "source": "built-in"}),
    })
    monkeypatch.setattr(repomod.urllib.request, "urlopen", fake)
    return fake


class TestResolve:
    def test_remote_source(self, server: _FakeServer) -> None:
        client = RepositoryClient("https://registry.test/")
        resolved = client.resolve("pkg.a", VersionRequest.parse("^1.0.0"))
        assert resolved.version == "1.2.0"
        assert resolved.source.locator == "https://cdn/a.tgz"
        assert not resolved.source.is_builtin
        assert server.requests[-1].get_header("Authorization") == "Bearer t0k"

    def test_builtin_source(self, server: _FakeServer) -> None:
        resolved = RepositoryClient("https://registry.test/").resolve("pkg.core", VersionRequest.any())
        assert resolved.source.is_builtin
        assert resolved.version == "3.0.0"

    def test_token_fetched_once(self, server: _FakeServer) -> None:
        client = RepositoryClient("https://registry.test/")
        client.resolve("pkg.core", VersionRequest.any())
        client.resolve("pkg.core", VersionRequest.any())
        token_calls = [r for r in server.requests if r.full_url.endswith("/session/guest/token")]
        assert len(token_calls) == 1

    def test_http_error(self, server: _FakeServer) -> None:
        server.routes["/repo/download/nope"] = urllib.error.HTTPError(
            "https://registry.test/repo/download/nope", 404, "Not Found", {}, io.BytesIO(b""),  # type: ignore[arg-type]
        )
        with pytest.raises(RepositoryError) as exc_info:
            RepositoryClient("https://registry.test/").resolve("nope", VersionRequest.any())
        assert exc_info.value.status == 404

    def test_missing_fields(self, server: _FakeServer) -> None:
        server.routes["/repo/download/bad"] = _Resp(200, {"version": "1.0.0"})
        with pytest.raises(RepositoryError, match="version/source"):
            RepositoryClient("https://registry.test/").resolve("bad", VersionRequest.any())

    def test_invalid_json(self, server: _FakeServer) -> None:
        server.routes["/repo/download/bad"] = _Resp(200, b"<html>")
        with pytest.raises(RepositoryError, match="响应格式错误"):
            RepositoryClient("https://registry.test/").resolve("bad", VersionRequest.any())


class TestAccess:
    def test_token_requires_201(self, server: _FakeServer) -> None:
        server.routes["/session/guest/token"] = _Resp(200, {"token": "x"})
        with pytest.raises(RepositoryError, match="访问令牌"):
            RepositoryClient("https://registry.test/").get_access()

    def test_network_error(self, server: _FakeServer) -> None:
        server.routes["/session/guest/token"] = urllib.error.URLError("refused")
        with pytest.raises(RepositoryError, match="refused"):
            RepositoryClient("https://registry.test/").get_access()

    def test_server_scheme_checked(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            RepositoryClient("file:///etc/")
