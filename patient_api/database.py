import logging
import os
import time
from pathlib import Path
from urllib.parse import urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL, DB_CA_CERT_PATH, IS_PRODUCTION

logger = logging.getLogger(__name__)

# Pool caps at 10 connections in total (size + overflow)
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "5"))
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
ENABLE_QUERY_LOGGING = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))


def is_local_database(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1", "")


def build_connect_args(url: str) -> dict:
    """
    TLS settings for the PostgreSQL driver.

    Remote databases always verify the server certificate against the RDS CA
    bundle. Local development connections skip TLS.
    """
    if url.startswith("sqlite"):
        return {"check_same_thread": False}

    if is_local_database(url) and not IS_PRODUCTION:
        return {}

    if not Path(DB_CA_CERT_PATH).exists():
        if IS_PRODUCTION:
            raise RuntimeError("RDS CA certificate is required in production")
        logger.warning("⚠️ RDS CA bundle not found, falling back to sslmode=require")
        return {"sslmode": "require"}

    return {"sslmode": "verify-full", "sslrootcert": DB_CA_CERT_PATH}


def build_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(url, connect_args=build_connect_args(url))

    return create_engine(
        url,
        pool_pre_ping=True,  # Test connections before using
        pool_recycle=POOL_RECYCLE,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        echo=False,  # SQL may contain PHI, only slow query previews are logged
        connect_args=build_connect_args(url),
    )


try:
    engine = build_engine(DATABASE_URL)
    logger.info("✅ Database engine created successfully")
    logger.info(
        f"📊 Connection pool: size={POOL_SIZE}, max_overflow={MAX_OVERFLOW}, timeout={POOL_TIMEOUT}s"
    )
except Exception as e:
    logger.error(f"❌ Failed to create database engine: {e}")
    raise

# Slow query logging for performance monitoring
if ENABLE_QUERY_LOGGING:

    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
        conn.info.setdefault("query_start_time", []).append(time.time())

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
        total = time.time() - conn.info["query_start_time"].pop(-1)
        if total > SLOW_QUERY_THRESHOLD:
            # Statement text only, bound parameters can hold PHI
            logger.warning(f"🐌 Slow query ({total:.2f}s): {statement[:200]}...")

    logger.info(f"📊 Slow query logging enabled (threshold: {SLOW_QUERY_THRESHOLD}s)")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
