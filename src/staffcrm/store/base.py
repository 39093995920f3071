from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

Row = dict[str, Any]


class PersistenceError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ForeignKeyViolation(PersistenceError):
    pass


class TableStore(Protocol):
    """Query capability the services need from a backend.

    ``eq`` filters are ANDed exact matches. ``ilike_any`` is a pair of
    (columns, term) matching rows where any column contains ``term``,
    ignoring case. ``embed`` names child tables whose rows referencing the
    selected row are nested under the child table name.
    """

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

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
    ) -> list[Row]: ...

    def update(self, table: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> list[Row]: ...

    def delete(self, table: str, *, eq: Mapping[str, Any]) -> list[Row]: ...

    def close(self) -> None: ...
