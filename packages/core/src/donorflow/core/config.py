"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、blob 存储目录、webhook 时效窗口、完成重试次数等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("DONORFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "DONORFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "donorflow.db"),
    )


def get_blob_dir() -> Path:
    """获取签署文件等 blob 的存储目录"""
    return Path(
        os.environ.get(
            "DONORFLOW_BLOB_DIR",
            str(_get_base_dir() / "blobs"),
        )
    )


def get_blob_base_url() -> str | None:
    """blob 对外访问的基础 URL，未设置时返回 file:// URL"""
    return os.environ.get("DONORFLOW_BLOB_BASE_URL") or None


def get_webhook_max_age_s() -> int:
    """webhook 时间戳允许偏离服务器时间的最大秒数"""
    return int(os.environ.get("DONORFLOW_WEBHOOK_MAX_AGE_S", "300"))


# 完成操作遇到并发冲突时的最大重试次数
COMPLETION_MAX_RETRIES: int = int(
    os.environ.get("DONORFLOW_COMPLETION_MAX_RETRIES", "3")
)

# 系统操作者 ID（webhook / CLI 触发的流转记录在 completed_by 中）
SIGNING_WEBHOOK_ACTOR_ID = "docusign-webhook"
SIGNING_STATUS_CHECK_ACTOR_ID = "docusign-status-check"
VALUATION_WEBHOOK_ACTOR_ID = "valuation-webhook"
CLI_ADMIN_ACTOR_ID = "cli-admin"

# 角色占位 assignee 前缀，如 "role:appraiser"
ROLE_SENTINEL_PREFIX = "role:"

# 重置工作流时参与者回到的状态
PARTICIPANT_RESET_STATUS = "interested"
