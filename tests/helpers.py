"""
Shared test helpers: value types, a SQLite-backed source table and an
in-memory batch reader.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import text

from tablemirror import BatchReader, Record, ScalarWatermarkCodec, column, table


@table("User")
@dataclass
class User:
    Id: int
    Name: str
    Email: Optional[str] = None


@table("Orders")
@dataclass
class Order:
    OrderNo: int = column(row_key=True)
    Customer: str = column("CustomerName", default=None)


@dataclass
class Item:
    Id: int
    Name: str = ""


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it holds or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class SqliteSource:
    """
    "User" table with an 8-byte big-endian row version, bumped on every write,
    and an "Orders" table keyed by an increasing integer.
    """

    def __init__(self, engine):
        self.engine = engine
        self._version = 0
        self._lock = threading.Lock()
        with engine.begin() as conn:
            conn.execute(text(
                'CREATE TABLE "User" ('
                '"Id" INTEGER PRIMARY KEY, "Name" TEXT, "Email" TEXT, '
                '"RowVersion" BLOB NOT NULL, "IsDeleted" INTEGER NOT NULL DEFAULT 0)'
            ))
            conn.execute(text(
                'CREATE TABLE "Orders" ("OrderNo" INTEGER PRIMARY KEY, "CustomerName" TEXT)'
            ))

    def next_version(self) -> bytes:
        with self._lock:
            self._version += 1
            return self._version.to_bytes(8, "big")

    def insert_users(self, ids: Iterable[int]):
        rows = [
            {"id": i, "name": f"user-{i}", "email": f"user{i}@example.com", "version": self.next_version()}
            for i in ids
        ]
        with self.engine.begin() as conn:
            conn.execute(
                text('INSERT INTO "User" ("Id", "Name", "Email", "RowVersion") '
                     'VALUES (:id, :name, :email, :version)'),
                rows
            )

    def rename_user(self, user_id: int, name: str):
        with self.engine.begin() as conn:
            conn.execute(
                text('UPDATE "User" SET "Name" = :name, "RowVersion" = :version WHERE "Id" = :id'),
                {"id": user_id, "name": name, "version": self.next_version()}
            )

    def delete_user(self, user_id: int):
        with self.engine.begin() as conn:
            conn.execute(
                text('UPDATE "User" SET "IsDeleted" = 1, "RowVersion" = :version WHERE "Id" = :id'),
                {"id": user_id, "version": self.next_version()}
            )

    def insert_orders(self, numbers: Iterable[int]):
        rows = [{"no": n, "customer": f"customer-{n}"} for n in numbers]
        with self.engine.begin() as conn:
            conn.execute(
                text('INSERT INTO "Orders" ("OrderNo", "CustomerName") VALUES (:no, :customer)'),
                rows
            )

    def clear_user_name(self, user_id: int):
        with self.engine.begin() as conn:
            conn.execute(
                text('UPDATE "User" SET "Name" = NULL, "RowVersion" = :version WHERE "Id" = :id'),
                {"id": user_id, "version": self.next_version()}
            )

    def create_slow_view(self, name: str = "SlowOrders"):
        """Orders-shaped view that scans a billion generated rows and returns none."""
        with self.engine.begin() as conn:
            conn.execute(text(
                f'CREATE VIEW "{name}" AS '
                'WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n LIMIT 1000000000) '
                'SELECT x AS "OrderNo", \'slow\' AS "CustomerName" FROM n WHERE x < 0'
            ))

    def create_user_view_without_email(self, name: str = "LegacyUser"):
        with self.engine.begin() as conn:
            conn.execute(text(
                f'CREATE VIEW "{name}" AS '
                'SELECT "Id", "Name", "RowVersion", "IsDeleted" FROM "User"'
            ))


def item(watermark, key=None, deleted: bool = False, name: str = "") -> Record:
    key = watermark if key is None else key
    return Record(watermark=watermark, value=Item(Id=key, Name=name), deleted=deleted, row_key=key)


class FakeBatchReader(BatchReader):
    """In-memory batch reader; errors queued in `errors` are raised by the next fetches."""

    def __init__(self, records: Iterable[Record] = (), batch_size: int = 2, row_key: bool = True):
        self.batch_size = batch_size
        self.codec = ScalarWatermarkCodec()
        self.name = "fake"
        self.records: List[Record] = list(records)
        self.errors: List[BaseException] = []
        self.calls = []
        self.cancelled = 0
        self._row_key = row_key
        self._lock = threading.Lock()

    @property
    def has_row_key(self) -> bool:
        return self._row_key

    def add(self, *records: Record):
        with self._lock:
            self.records.extend(records)

    def fail_next(self, *errors: BaseException):
        with self._lock:
            self.errors.extend(errors)

    def read_next_batch(self, since, inclusive=False):
        with self._lock:
            self.calls.append((since, inclusive))
            if self.errors:
                raise self.errors.pop(0)
            matching = [
                r for r in self.records
                if (r.watermark >= since if inclusive else r.watermark > since)
            ]
            matching.sort(key=lambda r: (r.watermark, r.row_key))
            return matching[:self.batch_size]

    def cancel(self):
        self.cancelled += 1


def reset_logging():
    """Undo configure_logging() so later tests see default propagation."""
    root = logging.getLogger("tablemirror")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)
