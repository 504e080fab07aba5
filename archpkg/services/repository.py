"""包仓库客户端

协议:
  1. GET  /session/guest/token          → 201 {"token": "..."}（每个客户端只取一次）
  2. GET  /repo/download/<id[@range]>   → 200 {"version": "...", "source": "<url>|built-in"}
     携带 Authorization: Bearer <token>
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any
from urllib.parse import quote, urljoin

from archpkg.core.exceptions import RepositoryError
from archpkg.core.models import PackageSource, ResolvedPackage, VersionRequest
from archpkg.utils.net import make_ssl_context, validate_url_scheme

logger = logging.getLogger(__name__)

GUEST_TOKEN_ROUTE = "/session/guest/token"
DOWNLOAD_ROUTE = "/repo/download/"


class RepositoryClient:
    """包仓库 HTTP 客户端"""

    def __init__(self, server: str, cafile: str = "", timeout: int = 60) -> None:
        validate_url_scheme(server, context="repo server")
        self.server = server
        self.cafile = cafile
        self.timeout = timeout
        self._token: str | None = None

    def make_url(self, route: str) -> str:
        return urljoin(self.server, route)

    def _request(self, url: str, token: str | None = None) -> tuple[int, Any]:
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        if token:
            req.add_header("Authorization", f"Bearer {token}")
        try:
            with urllib.request.urlopen(  # nosec B310
                req, timeout=self.timeout, context=make_ssl_context(self.cafile),
            ) as resp:
                status = resp.status
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raise RepositoryError(
                f"请求 {url} 失败: HTTP {e.code} {e.reason}", status=e.code,
            ) from e
        except (urllib.error.URLError, OSError) as e:
            raise RepositoryError(f"请求 {url} 失败: {e}") from e

        try:
            return status, json.loads(body)
        except json.JSONDecodeError as e:
            raise RepositoryError(
                f"请求 {url} 的响应格式错误: {e} [{body[:200]}]", status=status,
            ) from e

    def get_access(self) -> str:
        """获取访客令牌（已获取则直接返回）"""
        if self._token:
            return self._token
        logger.info("获取仓库访问令牌...")
        status, content = self._request(self.make_url(GUEST_TOKEN_ROUTE))
        if status != 201:
            raise RepositoryError(f"获取访问令牌失败: 服务端返回 {status}", status=status)
        token = content.get("token") if isinstance(content, dict) else None
        if not token:
            raise RepositoryError("获取访问令牌失败: 响应中没有 token", status=status)
        self._token = str(token)
        logger.debug("已获得访问令牌")
        return self._token

    def resolve(self, package_id: str, request: VersionRequest) -> ResolvedPackage:
        """把 id[@range] 解析为具体版本和下载来源"""
        token = self.get_access()
        url = self.make_url(DOWNLOAD_ROUTE + quote(request.qualify(package_id), safe="@"))
        logger.info("查询包来源: %s", request.qualify(package_id))
        status, content = self._request(url, token=token)
        if status != 200:
            raise RepositoryError(
                f"无法解析包 {package_id} 的下载地址: 服务端返回 {status}", status=status,
            )
        if not isinstance(content, dict) or not content.get("version") or not content.get("source"):
            raise RepositoryError(f"包 {package_id} 的仓库响应缺少 version/source: {content}")

        resolved = ResolvedPackage(
            package_id=package_id,
            version=str(content["version"]),
            source=PackageSource.parse(str(content["source"])),
        )
        logger.info("找到来源: %s@%s -> %s", package_id, resolved.version, resolved.source)
        return resolved
