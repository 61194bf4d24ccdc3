# db/session.py
from __future__ import annotations

import logging
import os
import pathlib
import ssl as _ssl
from typing import Any, Iterable, Optional

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

logger = logging.getLogger("booking-engine")


def _load_env_files(candidates: Iterable[str]) -> None:
    """
    Load env files from both CWD and the project root (relative to this file),
    without overriding values already provided by the platform.
    """
    here = pathlib.Path(__file__).resolve()
    roots = {
        pathlib.Path.cwd(),
        here.parent.parent,
    }
    for fname in candidates:
        for root in roots:
            p = root / fname
            if p.exists():
                load_dotenv(p, override=False)


_load_env_files((".env.local", "env.local", ".env"))

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _ssl_arg() -> Any:
    sslmode = os.getenv("DB_SSLMODE", "disable").lower()
    if sslmode in ("disable", "off", "false", "0"):
        return False
    if sslmode == "require":
        return True  # encrypted, no verification
    if sslmode in ("verify-ca", "verify-full"):
        ctx = _ssl.create_default_context(cafile=os.getenv("DB_SSLROOTCERT"))
        ctx.check_hostname = sslmode == "verify-full"
        return ctx
    return False


def make_engine(url: str) -> AsyncEngine:
    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args["ssl"] = _ssl_arg()
    return create_async_engine(
        url,
        pool_pre_ping=True,
        poolclass=NullPool,
        echo=bool(os.getenv("SQL_ECHO")),
        connect_args=connect_args,
    )


def get_engine() -> AsyncEngine:
    """Engine for DATABASE_URL, created on first use."""
    global _engine
    if _engine is None:
        url = os.getenv("DATABASE_URL")
        if not url:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = make_engine(url)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), expire_on_commit=False, class_=AsyncSession)
    return _sessionmaker


async def ping(engine: Optional[AsyncEngine] = None) -> bool:
    """Simple connectivity check for startup."""
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database ping failed: %s", e)
        return False
