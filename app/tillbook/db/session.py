import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.tillbook.core.config import settings
from app.tillbook.core.db_timing import add_db_time, current_db_timer

QUERY_STARTS_KEY = "tillbook_query_starts"


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Several tills may share one SQLite file in development.
        return {"check_same_thread": False, "timeout": 15}
    return {}


def _install_query_timer(target_engine) -> None:
    @event.listens_for(target_engine, "before_cursor_execute")
    def _query_started(conn, cursor, statement, parameters, context, executemany):
        if current_db_timer() is not None:
            conn.info.setdefault(QUERY_STARTS_KEY, []).append(time.perf_counter())

    @event.listens_for(target_engine, "after_cursor_execute")
    def _query_finished(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get(QUERY_STARTS_KEY)
        if starts:
            add_db_time((time.perf_counter() - starts.pop()) * 1000)


engine = create_engine(settings.DATABASE_URL, echo=False, future=True, connect_args=_connect_args(settings.DATABASE_URL))
_install_query_timer(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=True, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
