# db/init_db.py

import logging

from app.db.base import Base
from app.db.session import engine
from app.models import *  # noqa: F401,F403

logger = logging.getLogger(__name__)


def init_db(bind=None):
    """创建全部业务表（已存在的表跳过）"""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"数据表已就绪: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
