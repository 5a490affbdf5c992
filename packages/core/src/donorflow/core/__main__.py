"""CLI 入口模块 -- python -m donorflow.core <command>

支持的命令：
  reset-workflow <participant|donation> <id>  删除并重新生成作用域任务
  sync-stats [campaign_id]                    以捐赠记录重算活动统计
"""

import asyncio
import sys

from .config import CLI_ADMIN_ACTOR_ID, get_blob_dir, get_db_path
from .exceptions import WorkflowError
from .models import Actor, ScopeKind, WorkflowScope

_USAGE = """用法: python -m donorflow.core <command>
命令:
  reset-workflow <participant|donation> <id>  删除并重新生成作用域任务
  sync-stats [campaign_id]                    以捐赠记录重算活动统计"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command == "reset-workflow":
        if len(args) != 2 or args[0] not in (ScopeKind.PARTICIPANT, ScopeKind.DONATION):
            print(_USAGE)
            sys.exit(1)
        scope = WorkflowScope(kind=ScopeKind(args[0]), scope_id=args[1])
        _run(reset_workflow(scope))
    elif command == "sync-stats":
        if len(args) > 1:
            print(_USAGE)
            sys.exit(1)
        _run(sync_stats(args[0] if args else None))
    else:
        print(f"未知命令: {command}")
        print("可用命令: reset-workflow, sync-stats")
        sys.exit(1)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except WorkflowError as e:
        print(f"失败: [{e.code}] {e.message}")
        sys.exit(2)


async def reset_workflow(scope: WorkflowScope) -> None:
    """执行工作流重置"""
    from .factory import TaskFactory
    from .store import create_store_group

    print(f"数据库路径: {get_db_path()}")
    store_group = await create_store_group(get_db_path(), get_blob_dir())
    try:
        tasks = await TaskFactory(store_group).reset_workflow(
            scope, Actor.system(CLI_ADMIN_ACTOR_ID)
        )
        print(f"重置完成，{scope.key} 重新生成 {len(tasks)} 个任务")
    finally:
        await store_group.close()


async def sync_stats(campaign_id: str | None) -> None:
    """执行活动统计同步"""
    from .stats import sync_all_campaign_stats, sync_campaign_stats
    from .store import create_store_group

    print(f"数据库路径: {get_db_path()}")
    store_group = await create_store_group(get_db_path(), get_blob_dir())
    try:
        if campaign_id:
            results = [await sync_campaign_stats(store_group, campaign_id)]
        else:
            results = await sync_all_campaign_stats(store_group)
        for stats in results:
            print(
                f"{stats.campaign_id}: {stats.donor_count} 笔捐赠，"
                f"合计 {stats.total_amount:.2f}"
            )
        print(f"同步完成，共 {len(results)} 个活动")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
