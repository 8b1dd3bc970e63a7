"""按方言选择支持 ON CONFLICT 的 insert 构造器"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, model):
    """返回带 on_conflict_do_update / on_conflict_do_nothing 的 insert 语句"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"不支持的数据库方言: {dialect}")
