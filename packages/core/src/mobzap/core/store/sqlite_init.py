"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id       TEXT PRIMARY KEY,
    owner_id      TEXT NOT NULL,
    device_id     TEXT,
    category      TEXT NOT NULL,
    priority      INTEGER NOT NULL DEFAULT 5,
    status        TEXT NOT NULL DEFAULT 'pending',
    payload       TEXT NOT NULL DEFAULT '{}',
    result        TEXT,
    error         TEXT,
    retry_count   INTEGER NOT NULL DEFAULT 0,
    max_retries   INTEGER NOT NULL DEFAULT 3,
    progress      TEXT,
    scheduled_at  TEXT,
    executed_at   TEXT,
    completed_at  TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);
"""

_TASKS_INDEXES = [
    # 领取顺序：status + 优先级倒序 + 创建时间正序
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_dispatch "
        "ON tasks(status, priority DESC, created_at ASC);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_device ON tasks(device_id, status);",
]

# messages 表 DDL
_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    message_id    TEXT PRIMARY KEY,
    owner_id      TEXT NOT NULL,
    device_id     TEXT NOT NULL,
    task_id       TEXT,
    direction     TEXT NOT NULL,
    phone_number  TEXT NOT NULL DEFAULT '',
    content_type  TEXT NOT NULL DEFAULT 'text',
    content       TEXT NOT NULL DEFAULT '',
    media_url     TEXT,
    status        TEXT NOT NULL DEFAULT 'pending',
    remote_id     TEXT,
    delivered_at  TEXT,
    read_at       TEXT,
    error         TEXT,
    metadata      TEXT NOT NULL DEFAULT '{}',
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_MESSAGES_INDEXES = [
    # 同一任务最多一条 outgoing 消息
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_task_direction "
        "ON messages(task_id, direction) WHERE task_id IS NOT NULL;"
    ),
    "CREATE INDEX IF NOT EXISTS idx_messages_owner ON messages(owner_id, created_at DESC);",
]

# webhooks 表 DDL
_WEBHOOKS_DDL = """
CREATE TABLE IF NOT EXISTS webhooks (
    webhook_id            TEXT PRIMARY KEY,
    owner_id              TEXT NOT NULL,
    url                   TEXT NOT NULL,
    events                TEXT NOT NULL DEFAULT '[]',
    secret                TEXT NOT NULL,
    active                INTEGER NOT NULL DEFAULT 1,
    consecutive_failures  INTEGER NOT NULL DEFAULT 0,
    last_triggered_at     TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);
"""

_WEBHOOKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_webhooks_owner ON webhooks(owner_id, active);",
]

# devices 表 DDL（设备注册表，core 只读写存活状态）
_DEVICES_DDL = """
CREATE TABLE IF NOT EXISTS devices (
    device_id     TEXT PRIMARY KEY,
    owner_id      TEXT NOT NULL,
    phone_number  TEXT NOT NULL UNIQUE,
    device_name   TEXT NOT NULL DEFAULT '',
    package       TEXT NOT NULL DEFAULT 'normal',
    status        TEXT NOT NULL DEFAULT 'INACTIVE',
    is_connected  INTEGER NOT NULL DEFAULT 0,
    last_seen     TEXT,
    battery_level INTEGER,
    is_charging   INTEGER,
    created_at    TEXT NOT NULL
);
"""

# licenses 表 DDL（授权额度）
_LICENSES_DDL = """
CREATE TABLE IF NOT EXISTS licenses (
    license_id     TEXT PRIMARY KEY,
    owner_id       TEXT NOT NULL,
    status         TEXT NOT NULL DEFAULT 'ACTIVE',
    message_limit  INTEGER,
    expires_at     TEXT NOT NULL,
    created_at     TEXT NOT NULL
);
"""

# auto_responders 表 DDL（入站消息自动回复规则）
_AUTO_RESPONDERS_DDL = """
CREATE TABLE IF NOT EXISTS auto_responders (
    owner_id   TEXT PRIMARY KEY,
    enabled    INTEGER NOT NULL DEFAULT 1,
    rules      TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL
);
"""

_OTHER_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_devices_owner ON devices(owner_id, is_connected);",
    "CREATE INDEX IF NOT EXISTS idx_licenses_owner ON licenses(owner_id, status);",
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
    for ddl in (
        _TASKS_DDL,
        _MESSAGES_DDL,
        _WEBHOOKS_DDL,
        _DEVICES_DDL,
        _LICENSES_DDL,
        _AUTO_RESPONDERS_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _MESSAGES_INDEXES + _WEBHOOKS_INDEXES + _OTHER_INDEXES:
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
