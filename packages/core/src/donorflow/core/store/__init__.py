"""DonorFlow Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import aiosqlite

from .blob_store import LocalBlobStore
from .event_store import SqliteEventStore
from .protocols import BlobStore, EventStore, TaskStore
from .scope_store import SqliteScopeStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import TaskStatusConflictError, append_events, atomic


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        blob_dir: Path,
        blob_base_url: str | None = None,
    ) -> None:
        self.conn = conn
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.scope_store = SqliteScopeStore(conn)
        self.blob_store = LocalBlobStore(blob_dir, blob_base_url)
        self._write_lock = asyncio.Lock()

    def transaction(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        """开启一个原子写事务"""
        return atomic(self.conn, self._write_lock)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(
    db_path: str,
    blob_dir: str | Path,
    blob_base_url: str | None = None,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        blob_dir: blob 文件存储目录
        blob_base_url: blob 对外访问基础 URL

    Returns:
        StoreGroup 实例
    """
    blob_path = Path(blob_dir)
    blob_path.mkdir(parents=True, exist_ok=True)

    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn, blob_dir=blob_path, blob_base_url=blob_base_url)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteScopeStore",
    "LocalBlobStore",
    "TaskStore",
    "EventStore",
    "BlobStore",
    "TaskStatusConflictError",
    "atomic",
    "append_events",
    "init_db",
]
