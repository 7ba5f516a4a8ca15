"""
core/db.py -- SQLAlchemy engine construction shared by every store.

Each store (auth/store.py, courses/store.py) owns its tables and its engine;
this module only centralizes the SQLite connection tweaks so both stores
behave the same against one database URL.

Layer rule: core/ is the kernel. No imports from api/, auth/, courses/, mail/.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL allows readers to proceed without blocking during writes. Set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Build an engine for db_url.

    SQLite: check_same_thread=False because FastAPI runs sync handlers in a
    threadpool; WAL for file databases only (in-memory databases ignore it).
    """
    connect_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if is_sqlite and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine
