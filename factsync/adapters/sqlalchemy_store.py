"""SQLAlchemy key/value store adapter for factsync."""

import json
from typing import Any, Callable, Dict, Iterable, Mapping

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

TABLE_NAME = "factsync_kv"


class SQLAlchemyKeyValueStore:
    """Persists JSON values in a two-column relational table.

    ``session_factory`` is any zero-argument callable returning a new
    ``Session``, typically a ``sessionmaker`` bound to an engine. Every
    operation runs in its own transaction so a failed ``set`` leaves the
    previous values intact.
    """

    def __init__(self, session_factory: Callable[[], Session], table_name: str = TABLE_NAME):
        self.session_factory = session_factory
        self.table_name = table_name

    def ensure_schema(self) -> None:
        with self.session_factory() as db, db.begin():
            db.execute(
                text(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table_name} (
                        key VARCHAR(255) PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
            )

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        with self.session_factory() as db:
            rows = db.execute(
                text(f"SELECT key, value FROM {self.table_name} WHERE key IN :keys").bindparams(
                    bindparam("keys", expanding=True)
                ),
                {"keys": keys},
            ).fetchall()
        return {row.key: json.loads(row.value) for row in rows}

    def set(self, items: Mapping[str, Any]) -> None:
        encoded = [{"key": key, "value": json.dumps(value)} for key, value in items.items()]
        if not encoded:
            return
        with self.session_factory() as db, db.begin():
            db.execute(
                text(f"DELETE FROM {self.table_name} WHERE key IN :keys").bindparams(
                    bindparam("keys", expanding=True)
                ),
                {"keys": [row["key"] for row in encoded]},
            )
            db.execute(
                text(f"INSERT INTO {self.table_name} (key, value) VALUES (:key, :value)"),
                encoded,
            )

    def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        with self.session_factory() as db, db.begin():
            db.execute(
                text(f"DELETE FROM {self.table_name} WHERE key IN :keys").bindparams(
                    bindparam("keys", expanding=True)
                ),
                {"keys": keys},
            )
