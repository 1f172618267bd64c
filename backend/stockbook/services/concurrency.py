# Overview: Row locking and retry helpers for stock-changing transactions.

from __future__ import annotations

import time
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() covers it there.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take SQLite's write lock up front so a check-then-write sequence cannot
    interleave with another writer. No-op on other dialects.

    Earlier reads leave the session in a transaction that pysqlite never
    opened on the database, so nothing would be locked. That transaction is
    closed first (committing anything the caller left pending) and every
    read after this point runs under the write lock.
    """
    if db.engine.dialect.name != "sqlite":
        return
    db.session.commit()
    db.session.execute(text("BEGIN IMMEDIATE"))


def lock_products(product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Lock product rows in ascending id order and return them keyed by id.

    Stock checks and the writes that depend on them must happen while these
    locks are held. Fixed ordering keeps two multi-product sales from
    deadlocking each other.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = (
        lock_for_update(db.session.query(Product).filter(Product.id.in_(ids)))
        .order_by(Product.id)
        .all()
    )
    return {p.id: p for p in rows}


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). Any other exception rolls
    the session back and propagates immediately.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
