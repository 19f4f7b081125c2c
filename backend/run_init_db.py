"""开发环境建表

用法：
    python run_init_db.py           # 只建表
    python run_init_db.py --seed    # 建表并写入演示目录（scripts/seed_catalog.py）

生产环境请使用 alembic 迁移。
"""

import argparse
import asyncio
import logging

from concierge.core.database import Base, close_db, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main(seed: bool = False):
    try:
        await init_db()
        logger.info(f"Tables ready: {', '.join(t.name for t in Base.metadata.sorted_tables)}")
        if seed:
            from scripts.seed_catalog import seed_catalog

            await seed_catalog()
    except Exception:
        logger.exception("Database initialization failed")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create concierge tables in the configured database")
    parser.add_argument("--seed", action="store_true", help="also seed the demo smartphone catalog")
    args = parser.parse_args()
    asyncio.run(main(seed=args.seed))
