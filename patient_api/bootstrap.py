"""
Database bootstrap

Brings an existing database up to the current models before the API serves
requests. Every step checks the live schema first and can run any number of
times. A failing step is logged and the remaining steps still run.
"""

import logging
from typing import Callable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine

from . import models, models_billing, models_order  # noqa: F401 - registers every table
from .database import Base
from .models import NON_MEDICAL_SERVICES, Program
from .models_order import Order, ShippingOrder

logger = logging.getLogger(__name__)

# Columns added after the first production deploy: (table, column)
ADDED_COLUMNS = [
    (Order.__table__, "visit_fee_amount"),
    (Order.__table__, "program_id"),
    (ShippingOrder.__table__, "retry_count"),
    (ShippingOrder.__table__, "last_retry_at"),
    (ShippingOrder.__table__, "next_retry_at"),
    (ShippingOrder.__table__, "retry_error"),
] + [
    (Program.__table__, column)
    for flag, price, _ in NON_MEDICAL_SERVICES
    for column in (flag, price)
]

BACKFILLS = [
    ("shipping_orders.retry_count", "UPDATE shipping_orders SET retry_count = 0 WHERE retry_count IS NULL", {}),
    ("programs.is_active", "UPDATE programs SET is_active = :value WHERE is_active IS NULL", {"value": True}),
]

# (index name, table, columns)
INDEXES = [
    ("ix_form_products_questionnaire_id", "form_products", ("questionnaire_id",)),
    ("ix_form_products_product_id", "form_products", ("product_id",)),
    ("ix_shipping_orders_status_last_retry_at", "shipping_orders", ("status", "last_retry_at")),
]


def column_ddl(conn: Connection, column) -> str:
    """Column definition for ALTER TABLE ... ADD COLUMN, nullable with a literal default"""
    ddl = f"{column.name} {column.type.compile(dialect=conn.dialect)}"
    default = column.default.arg if column.default is not None and column.default.is_scalar else None
    if isinstance(default, bool):
        if conn.dialect.name == "postgresql":
            ddl += f" DEFAULT {'TRUE' if default else 'FALSE'}"
        else:
            ddl += f" DEFAULT {int(default)}"
    elif isinstance(default, (int, float)):
        ddl += f" DEFAULT {default}"
    return ddl


def add_missing_columns(conn: Connection) -> list[str]:
    inspector = inspect(conn)
    applied = []
    for table, name in ADDED_COLUMNS:
        existing = {c["name"] for c in inspector.get_columns(table.name)}
        if name in existing:
            continue
        conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {column_ddl(conn, table.c[name])}"))
        applied.append(f"added column {table.name}.{name}")
    return applied


def backfill_defaults(conn: Connection) -> list[str]:
    applied = []
    for label, statement, params in BACKFILLS:
        result = conn.execute(text(statement), params)
        if result.rowcount:
            applied.append(f"backfilled {label} ({result.rowcount} rows)")
    return applied


def relax_program_clinic(conn: Connection) -> list[str]:
    """Template programs have no clinic; older schemas declared clinic_id NOT NULL"""
    if conn.dialect.name != "postgresql":
        return []
    columns = {c["name"]: c for c in inspect(conn).get_columns("programs")}
    if columns.get("clinic_id", {}).get("nullable", True):
        return []
    conn.execute(text("ALTER TABLE programs ALTER COLUMN clinic_id DROP NOT NULL"))
    return ["dropped NOT NULL on programs.clinic_id"]


def create_indexes(conn: Connection) -> list[str]:
    inspector = inspect(conn)
    applied = []
    for name, table, columns in INDEXES:
        if name in {ix["name"] for ix in inspector.get_indexes(table)}:
            continue
        conn.execute(text(f"CREATE INDEX IF NOT EXISTS {name} ON {table} ({', '.join(columns)})"))
        applied.append(f"created index {name}")
    return applied


STEPS: list[tuple[str, Callable[[Connection], list[str]]]] = [
    ("add missing columns", add_missing_columns),
    ("backfill defaults", backfill_defaults),
    ("relax programs.clinic_id", relax_program_clinic),
    ("create indexes", create_indexes),
]


def initialize_database(engine: Engine) -> list[str]:
    """Create tables, then apply each schema step. Returns the changes applied."""
    applied: list[str] = []

    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Database tables ensured")
    except Exception as e:
        # Another worker can create the same tables concurrently
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("ℹ️ Database tables already exist (created by another worker)")
        else:
            logger.error(f"❌ Failed to create database tables: {type(e).__name__}: {e}")

    for label, step in STEPS:
        try:
            with engine.begin() as conn:
                changes = step(conn)
        except Exception as e:
            logger.error(f"❌ Bootstrap step '{label}' failed: {type(e).__name__}: {e}")
            continue
        for change in changes:
            logger.info(f"🔧 {change}")
        applied.extend(changes)

    logger.info(f"✅ Database bootstrap complete ({len(applied)} changes)")
    return applied
