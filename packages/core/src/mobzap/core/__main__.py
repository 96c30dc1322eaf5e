"""CLI 入口模块 -- python -m mobzap.core <command>

支持的命令：
  init-db  初始化数据库（建表 + 索引）
  stats    按状态统计任务数
"""

import asyncio
import sys

from .config import get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m mobzap.core <command>")
        print("命令:")
        print("  init-db  初始化数据库")
        print("  stats    按状态统计任务数")
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "stats":
        asyncio.run(print_stats())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, stats")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库文件并初始化表结构"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    await store_group.close()
    print("初始化完成")


async def print_stats() -> None:
    """输出各状态任务数"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())

    try:
        counts = await store_group.task_store.count_by_status()
        if not counts:
            print("暂无任务")
            return
        for status, count in sorted(counts.items()):
            print(f"{status:<12} {count}")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
