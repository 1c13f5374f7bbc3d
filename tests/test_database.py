"""Tests for database setup helpers."""

from sqlalchemy import inspect

from backoffice.core import database as db_module
from backoffice.core.database import Base, init_db


def test_init_db_creates_all_tables():
    Base.metadata.drop_all(bind=db_module.engine)

    init_db()

    tables = set(inspect(db_module.engine).get_table_names())
    assert {"customers", "coupons", "coupon_uses", "orphaned_rule_logs"} <= tables
