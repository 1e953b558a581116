from __future__ import annotations
import os

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

from .config import settings

# ──────────────────────────────────────────────────────────────────────────────
# DATABASE URL
# ──────────────────────────────────────────────────────────────────────────────

# Prefer env var (tests point this at in-memory SQLite); fall back to settings.
DATABASE_URL = os.getenv("DATABASE_URL") or settings.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # one shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    return kwargs

# ──────────────────────────────────────────────────────────────────────────────
# SQLAlchemy engine/session
# ──────────────────────────────────────────────────────────────────────────────
engine = create_engine(DATABASE_URL, future=True, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _is_postgres() -> bool:
    return engine.url.get_backend_name().startswith("postgres")

def _table_exists(conn, table_name: str) -> bool:
    """
    Works on Postgres and SQLite. Uses information_schema for PG and sqlite_master for SQLite.
    """
    if _is_postgres():
        res = conn.execute(text("""
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = :t
            )
        """), {"t": table_name}).scalar()
        return bool(res)
    res = conn.execute(text("""
        SELECT 1 FROM sqlite_master WHERE type='table' AND name=:t
    """), {"t": table_name}).first()
    return bool(res)

def init_db() -> None:
    """
    One‑shot initializer to call at app/worker startup: create every table
    that does not exist yet. Idempotent.
    """
    # Import here to avoid circular import at module import time
    from .models import Base

    Base.metadata.create_all(bind=engine)

def reset_db() -> None:
    """Drop and recreate the schema (dev only, behind RESET_DB_ON_STARTUP)."""
    from .models import Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("[db] schema dropped and recreated")
