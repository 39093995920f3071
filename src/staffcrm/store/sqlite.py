from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from staffcrm.services.utils import utc_now_iso
from staffcrm.store.base import ForeignKeyViolation, PersistenceError, Row
from staffcrm.store.migrations import SCHEMA_PATH, apply_schema

TIMESTAMP_FIELDS = ("created_date", "updated_date")


class SqliteStore:
    """Local table store that behaves like the hosted backend.

    Primary keys and ``created_date``/``updated_date`` are assigned here on
    insert when the caller leaves them out, foreign keys are enforced, and
    ``embed`` follows the declared foreign keys of the child tables.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._columns: dict[str, dict[str, bool]] = {}

    @contextmanager
    def connect(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def apply_schema(self, schema_path: Path = SCHEMA_PATH) -> None:
        with self.connect() as conn:
            apply_schema(conn, schema_path)
        self._columns.clear()

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        with self._guard(), self.connect() as conn:
            columns = self._table_columns(conn, table)
            values = dict(row)
            self._check_columns(table, columns, values)
            pk = self._primary_key(table, columns)
            if pk and values.get(pk) is None:
                values[pk] = str(uuid4())
            now = utc_now_iso()
            for name in TIMESTAMP_FIELDS:
                if name in columns and values.get(name) is None:
                    values[name] = now
            names = list(values)
            placeholders = ", ".join("?" for _ in names)
            conn.execute(
                f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                [values[name] for name in names],
            )
            if pk:
                created = conn.execute(
                    f"SELECT * FROM {table} WHERE {pk} = ?", (values[pk],)
                ).fetchone()
            else:
                created = conn.execute(
                    f"SELECT * FROM {table} WHERE rowid = last_insert_rowid()"
                ).fetchone()
            return dict(created)

    def select(
        self,
        table: str,
        *,
        eq: Mapping[str, Any] | None = None,
        ilike_any: tuple[Sequence[str], str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        columns: Sequence[str] | None = None,
        embed: Sequence[str] = (),
    ) -> list[Row]:
        with self._guard(), self.connect() as conn:
            known = self._table_columns(conn, table)
            selected = list(columns) if columns else ["*"]
            self._check_columns(table, known, [c for c in selected if c != "*"])
            where, params = self._where(table, known, eq, ilike_any)
            query = f"SELECT {', '.join(selected)} FROM {table}{where}"
            if order_by:
                self._check_columns(table, known, [order_by])
                direction = "DESC" if descending else "ASC"
                query += f" ORDER BY {order_by} {direction}, rowid {direction}"
            rows = [dict(row) for row in conn.execute(query, params).fetchall()]
            for child in embed:
                self._embed(conn, table, child, rows)
            return rows

    def update(self, table: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> list[Row]:
        if not eq:
            raise PersistenceError(f"Refusing to update {table} without a filter.")
        with self._guard(), self.connect() as conn:
            known = self._table_columns(conn, table)
            self._check_columns(table, known, values)
            where, params = self._where(table, known, eq, None)
            rowids = [row[0] for row in conn.execute(f"SELECT rowid FROM {table}{where}", params)]
            if not rowids or not values:
                return [dict(row) for row in self._by_rowid(conn, table, rowids)]
            assignments = ", ".join(f"{name} = ?" for name in values)
            marks = ", ".join("?" for _ in rowids)
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE rowid IN ({marks})",
                [*values.values(), *rowids],
            )
            return [dict(row) for row in self._by_rowid(conn, table, rowids)]

    def delete(self, table: str, *, eq: Mapping[str, Any]) -> list[Row]:
        if not eq:
            raise PersistenceError(f"Refusing to delete from {table} without a filter.")
        with self._guard(), self.connect() as conn:
            known = self._table_columns(conn, table)
            where, params = self._where(table, known, eq, None)
            rows = [dict(row) for row in conn.execute(f"SELECT * FROM {table}{where}", params)]
            conn.execute(f"DELETE FROM {table}{where}", params)
            return rows

    def close(self) -> None:
        self._columns.clear()

    def _where(
        self,
        table: str,
        known: Mapping[str, bool],
        eq: Mapping[str, Any] | None,
        ilike_any: tuple[Sequence[str], str] | None,
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for name, value in (eq or {}).items():
            self._check_columns(table, known, [name])
            if value is None:
                clauses.append(f"{name} IS NULL")
            else:
                clauses.append(f"{name} = ?")
                params.append(value)
        if ilike_any:
            search_columns, term = ilike_any
            self._check_columns(table, known, search_columns)
            pattern = "%" + _escape_like(term.casefold()) + "%"
            clauses.append(
                "("
                + " OR ".join(f"casefold({name}) LIKE ? ESCAPE '\\'" for name in search_columns)
                + ")"
            )
            params.extend(pattern for _ in search_columns)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _embed(self, conn: sqlite3.Connection, parent: str, child: str, rows: list[Row]) -> None:
        self._table_columns(conn, child)
        link = None
        for fk in conn.execute(f"PRAGMA foreign_key_list({child})").fetchall():
            if fk["table"] == parent:
                link = (fk["from"], fk["to"])
                break
        if link is None:
            raise PersistenceError(f"No relationship between {parent} and {child}.")
        child_column, parent_column = link
        keys = [row[parent_column] for row in rows if row.get(parent_column) is not None]
        grouped: dict[Any, list[Row]] = {key: [] for key in keys}
        if keys:
            marks = ", ".join("?" for _ in keys)
            for child_row in conn.execute(
                f"SELECT * FROM {child} WHERE {child_column} IN ({marks}) ORDER BY rowid",
                keys,
            ):
                grouped[child_row[child_column]].append(dict(child_row))
        for row in rows:
            row[child] = grouped.get(row.get(parent_column), [])

    def _by_rowid(self, conn: sqlite3.Connection, table: str, rowids: list[int]):
        if not rowids:
            return []
        marks = ", ".join("?" for _ in rowids)
        return conn.execute(
            f"SELECT * FROM {table} WHERE rowid IN ({marks}) ORDER BY rowid", rowids
        ).fetchall()

    def _table_columns(self, conn: sqlite3.Connection, table: str) -> dict[str, bool]:
        if table not in self._columns:
            info = conn.execute(
                "SELECT name, pk FROM pragma_table_info(?)", (table,)
            ).fetchall()
            if not info:
                raise PersistenceError(f"Unknown table: {table}")
            self._columns[table] = {row["name"]: bool(row["pk"]) for row in info}
        return self._columns[table]

    @staticmethod
    def _primary_key(table: str, columns: Mapping[str, bool]) -> str | None:
        keys = [name for name, is_pk in columns.items() if is_pk]
        return keys[0] if len(keys) == 1 else None

    @staticmethod
    def _check_columns(table: str, known: Mapping[str, bool], names: Iterable[str]) -> None:
        unknown = [name for name in names if name not in known]
        if unknown:
            raise PersistenceError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    @contextmanager
    def _guard(self):
        try:
            yield
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc):
                raise ForeignKeyViolation(str(exc), code="23503") from exc
            raise PersistenceError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
