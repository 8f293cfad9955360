"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from sqlalchemy import inspect

from .extensions import db


def ensure_database_schema() -> None:
    """Create the ``characters`` table when the database is new.

    Runs on every application start; an existing table is left untouched.
    """

    if "characters" in inspect(db.engine).get_table_names():
        return

    # Import locally so the model is registered before create_all.
    from .models import Character  # noqa: F401

    db.create_all()
