"""网络工具 — URL 安全校验与 TLS 上下文"""

from __future__ import annotations

import ssl
from urllib.parse import urlparse

from archpkg.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def make_ssl_context(cafile: str = "") -> ssl.SSLContext | None:
    """按自定义 CA 证书构建 TLS 上下文，未配置证书时返回 None（使用系统默认）"""
    if not cafile:
        return None
    return ssl.create_default_context(cafile=cafile)
