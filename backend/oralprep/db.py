from __future__ import annotations

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import Settings

DEFAULT_DATABASE_URL = "sqlite:///./practice.db"

Base = declarative_base()


def create_db_engine(settings: Settings) -> Engine:
	url = settings.database_url or DEFAULT_DATABASE_URL
	kwargs = {}
	if url.startswith("sqlite"):
		kwargs["connect_args"] = {"check_same_thread": False}
		# An in-memory database only exists on a single shared connection
		if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
			kwargs["poolclass"] = StaticPool
	return create_engine(url, future=True, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False)


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(engine: Engine) -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "practices" in tables:
		cols = {c["name"] for c in inspector.get_columns("practices")}
		with engine.begin() as conn:
			if "processing_error" not in cols:
				conn.exec_driver_sql("ALTER TABLE practices ADD COLUMN processing_error TEXT")
			if "context" not in cols:
				conn.exec_driver_sql("ALTER TABLE practices ADD COLUMN context JSON")
	if "practice_questions" in tables:
		cols = {c["name"] for c in inspector.get_columns("practice_questions")}
		with engine.begin() as conn:
			if "video_transcript" not in cols:
				conn.exec_driver_sql("ALTER TABLE practice_questions ADD COLUMN video_transcript TEXT")
			if "unscored_reason" not in cols:
				conn.exec_driver_sql("ALTER TABLE practice_questions ADD COLUMN unscored_reason VARCHAR(32)")
