"""BlobStore 文件系统实现

签署完成的文件等二进制内容写入本地目录，返回可访问 URL。
同名路径重复写入直接覆盖（webhook 重复投递时结果一致）。
"""

import hashlib
from pathlib import Path, PurePosixPath

import structlog

log = structlog.get_logger()


def compute_hash_and_size(content: bytes) -> tuple[str, int]:
    """计算 SHA-256 hash 和内容大小

    Args:
        content: 原始内容字节

    Returns:
        (sha256_hex, size_bytes) 元组
    """
    return hashlib.sha256(content).hexdigest(), len(content)


class LocalBlobStore:
    """BlobStore 的本地文件系统实现"""

    def __init__(self, root_dir: Path, base_url: str | None = None) -> None:
        self._root_dir = root_dir
        self._base_url = base_url.rstrip("/") if base_url else None

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    async def store(self, path: str, content: bytes, content_type: str) -> str:
        """写入 blob 并返回 URL

        Args:
            path: 相对路径，如 signed-documents/signed-nda-env1.pdf
            content: 文件内容
            content_type: MIME 类型（仅记录日志）

        Raises:
            ValueError: path 为绝对路径或包含 ..
        """
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)

        hash_hex, size = compute_hash_and_size(content)
        log.info(
            "blob_stored",
            path=path,
            size=size,
            sha256=hash_hex,
            content_type=content_type,
        )
        return self.url_for(path)

    async def read(self, path: str) -> bytes | None:
        """读取 blob 内容，不存在时返回 None"""
        file_path = self._resolve(path)
        if not file_path.exists():
            return None
        return file_path.read_bytes()

    def url_for(self, path: str) -> str:
        """blob 的对外 URL"""
        if self._base_url:
            return f"{self._base_url}/{path}"
        return self._resolve(path).resolve().as_uri()

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"invalid blob path: {path}")
        return self._root_dir / rel
