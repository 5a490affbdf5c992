"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id         TEXT PRIMARY KEY,
    scope_key       TEXT NOT NULL,
    participant_id  TEXT,
    donation_id     TEXT,
    campaign_id     TEXT NOT NULL DEFAULT '',
    donor_id        TEXT NOT NULL DEFAULT '',
    title           TEXT NOT NULL DEFAULT '',
    description     TEXT NOT NULL DEFAULT '',
    type            TEXT NOT NULL,
    assigned_to     TEXT,
    assigned_role   TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'blocked',
    priority        TEXT NOT NULL DEFAULT 'medium',
    dependencies    TEXT NOT NULL DEFAULT '[]',
    task_order      INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT NOT NULL DEFAULT '{}',
    comments        TEXT NOT NULL DEFAULT '[]',
    completion_data TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    completed_at    TEXT,
    completed_by    TEXT,
    created_by      TEXT,

    CHECK ((participant_id IS NULL) != (donation_id IS NULL))
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_scope ON tasks(scope_key, task_order);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    # webhook 按外部 ID 反查任务
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_envelope_id "
        "ON tasks(json_extract(metadata, '$.docusign_envelope_id'));"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_valuation_id "
        "ON tasks(json_extract(metadata, '$.valuation_id'));"
    ),
]

# events 表 DDL（不设外键：重置工作流会删除任务，但审计事件保留）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id    TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    scope_key   TEXT NOT NULL,
    ts          TEXT NOT NULL,
    type        TEXT NOT NULL,
    actor_id    TEXT NOT NULL,
    payload     TEXT NOT NULL DEFAULT '{}',
    trace_id    TEXT NOT NULL DEFAULT ''
);
"""

_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_task ON events(task_id, event_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_scope ON events(scope_key, event_id);",
]

# 作用域记录 DDL
_CAMPAIGNS_DDL = """
CREATE TABLE IF NOT EXISTS campaigns (
    campaign_id        TEXT PRIMARY KEY,
    title              TEXT NOT NULL DEFAULT '',
    organization_name  TEXT NOT NULL DEFAULT '',
    created_by         TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'active',
    current_amount     REAL NOT NULL DEFAULT 0,
    donor_count        INTEGER NOT NULL DEFAULT 0,
    updated_at         TEXT
);
"""

_PARTICIPANTS_DDL = """
CREATE TABLE IF NOT EXISTS participants (
    participant_id  TEXT PRIMARY KEY,
    campaign_id     TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'interested',
    appraiser_id    TEXT,
    updated_at      TEXT
);
"""

_DONATIONS_DDL = """
CREATE TABLE IF NOT EXISTS donations (
    donation_id  TEXT PRIMARY KEY,
    campaign_id  TEXT NOT NULL,
    donor_id     TEXT NOT NULL,
    amount       REAL NOT NULL DEFAULT 0,
    status       TEXT NOT NULL DEFAULT 'pending',
    created_at   TEXT
);
"""

_SCOPE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_participants_campaign ON participants(campaign_id);",
    "CREATE INDEX IF NOT EXISTS idx_donations_campaign ON donations(campaign_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (_TASKS_DDL, _EVENTS_DDL, _CAMPAIGNS_DDL, _PARTICIPANTS_DDL, _DONATIONS_DDL):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _EVENTS_INDEXES + _SCOPE_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
