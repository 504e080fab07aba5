"""归档下载器

流式下载 .tar.gz 归档并解压到目标目录，去掉每个成员路径的第一级目录
（归档通常以 <name>-<version>/ 为顶层）。失败时删除目标目录后抛出 DownloadError。
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import IO

from archpkg.core.exceptions import DownloadError
from archpkg.utils.net import make_ssl_context, validate_url_scheme

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


class _ProgressReader:
    """包装响应流，按块记录下载进度"""

    def __init__(self, stream: IO[bytes], total: int) -> None:
        self._stream = stream
        self.total = total
        self.received = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size if size and size > 0 else _CHUNK)
        if chunk:
            self.received += len(chunk)
            if self.total:
                logger.debug("  下载进度 %d/%d (%.0f%%)",
                             self.received, self.total, 100.0 * self.received / self.total)
            else:
                logger.debug("  已下载 %d 字节", self.received)
        return chunk


def strip_first_component(member: tarfile.TarInfo) -> tarfile.TarInfo | None:
    """去掉成员路径第一级目录；只有一级的成员（顶层目录本身）返回 None"""
    name = member.name[2:] if member.name.startswith("./") else member.name
    parts = name.split("/", 1)
    if len(parts) < 2 or not parts[1]:
        return None
    member.name = parts[1]
    return member


class Downloader:
    """HTTP(S) .tar.gz 下载 + 解压"""

    def __init__(self, cafile: str = "", timeout: int = 60) -> None:
        self.cafile = cafile
        self.timeout = timeout

    def fetch(self, source: str, destination: Path) -> Path:
        destination = Path(destination)
        validate_url_scheme(source, context="package download")
        if destination.exists():
            shutil.rmtree(destination)
        destination.mkdir(parents=True)

        logger.info("下载 %s ...", source)
        try:
            with urllib.request.urlopen(  # nosec B310
                source, timeout=self.timeout, context=make_ssl_context(self.cafile),
            ) as resp:
                total = int(resp.headers.get("Content-Length") or 0)
                self.extract(_ProgressReader(resp, total), destination)
        except urllib.error.HTTPError as e:
            shutil.rmtree(destination, ignore_errors=True)
            if e.code == 404:
                raise DownloadError(f"包不可用: {source}") from e
            raise DownloadError(f"下载包失败 [{source}]: HTTP {e.code}") from e
        except (urllib.error.URLError, OSError, tarfile.TarError) as e:
            shutil.rmtree(destination, ignore_errors=True)
            raise DownloadError(f"下载或解压包失败 [{source}]: {e}") from e

        logger.info("下载完成: %s", destination)
        return destination

    @staticmethod
    def extract(fileobj: IO[bytes] | _ProgressReader, destination: Path) -> None:
        """以流模式解压 gzip tar，去掉顶层目录"""
        with tarfile.open(fileobj=fileobj, mode="r|gz") as tf:  # type: ignore[call-overload]
            for member in tf:
                stripped = strip_first_component(member)
                if stripped is None:
                    continue
                tf.extract(stripped, path=str(destination), filter="data")
