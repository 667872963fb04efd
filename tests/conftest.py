"""Shared fixtures: small SQLite databases with foreign keys."""

import sqlite3
from pathlib import Path

import pytest

from syncdb.config import Settings, SyncOptions


SHOP_SCHEMA = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    created_at TEXT
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    customer_id INTEGER REFERENCES customers(id),
    total REAL,
    meta TEXT
);
CREATE TABLE logs (
    id INTEGER PRIMARY KEY,
    message TEXT
);
CREATE TABLE products (
    sku TEXT PRIMARY KEY,
    price REAL
);
CREATE TABLE empty_table (
    id INTEGER PRIMARY KEY,
    note TEXT
);
CREATE INDEX idx_orders_customer ON orders(customer_id);
CREATE VIEW big_orders AS SELECT * FROM orders WHERE total > 15;
"""


@pytest.fixture
def shop_db(tmp_path: Path) -> Path:
    """Create a five-table SQLite database for testing."""
    db_path = tmp_path / "shop.db"
    conn = sqlite3.connect(db_path)
    conn.executescript(SHOP_SCHEMA)

    conn.executemany(
        "INSERT INTO customers (id, name, email, created_at) VALUES (?, ?, ?, ?)",
        [
            (1, "Alice", "alice@example.com", "2024-01-02 03:04:05"),
            (2, "O'Neil, Jr.", None, "2024-02-03 04:05:06"),
            (3, "Zoë", "zoe@example.com", None),
        ],
    )
    conn.executemany(
        "INSERT INTO orders (id, customer_id, total, meta) VALUES (?, ?, ?, ?)",
        [
            (1, 1, 10.5, '{"gift":true}'),
            (2, 1, 20.0, None),
            (3, 2, 7.25, '["a","b"]'),
            (4, 3, 99.99, None),
            (5, 3, 0.1, None),
        ],
    )
    conn.executemany(
        "INSERT INTO logs (id, message) VALUES (?, ?)",
        [(1, "started; ok"), (2, "-- not a comment")],
    )
    conn.executemany(
        "INSERT INTO products (sku, price) VALUES (?, ?)",
        [("A-1", 1.5), ("B-2", 3.0)],
    )
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def read_rows():
    """Read every row of a table, ordered by its first column."""

    def _read(db_path: Path, table: str) -> list[tuple]:
        conn = sqlite3.connect(db_path)
        try:
            return conn.execute(f'SELECT * FROM "{table}" ORDER BY 1').fetchall()
        finally:
            conn.close()

    return _read


@pytest.fixture
def make_settings(tmp_path: Path):
    """Factory for sqlite Settings with test-local paths."""

    def _make(database: Path, **sync: object) -> Settings:
        sync.setdefault("state_file", tmp_path / "state.json")
        sync.setdefault("path", tmp_path / "out")
        return Settings(driver="sqlite", database=str(database), sync=SyncOptions(**sync))

    return _make
