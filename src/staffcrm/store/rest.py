from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import requests

from staffcrm.store.base import ForeignKeyViolation, PersistenceError, Row

REST_PATH = "/rest/v1"
FOREIGN_KEY_VIOLATION = "23503"


class RestStore:
    """Table store over a PostgREST endpoint (Supabase style)."""

    def __init__(self, url: str, api_key: str, timeout: float = 30, session: requests.Session | None = None) -> None:
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            }
        )

    def __enter__(self) -> RestStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        data = self._request("POST", table, json=[dict(row)])
        if not data:
            raise PersistenceError(f"Insert into {table} returned no rows.")
        return data[0]

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
        select = [*(columns or ["*"]), *(f"{child}(*)" for child in embed)]
        params: list[tuple[str, str]] = [("select", ",".join(select))]
        params.extend(_eq_params(eq))
        if ilike_any:
            search_columns, term = ilike_any
            pattern = _quote(f"*{_escape_like(term)}*")
            params.append(
                ("or", "(" + ",".join(f"{name}.ilike.{pattern}" for name in search_columns) + ")")
            )
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        return self._request("GET", table, params=params)

    def update(self, table: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> list[Row]:
        if not eq:
            raise PersistenceError(f"Refusing to update {table} without a filter.")
        return self._request("PATCH", table, params=_eq_params(eq), json=dict(values))

    def delete(self, table: str, *, eq: Mapping[str, Any]) -> list[Row]:
        if not eq:
            raise PersistenceError(f"Refusing to delete from {table} without a filter.")
        return self._request("DELETE", table, params=_eq_params(eq))

    def close(self) -> None:
        self.session.close()

    def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]] | None = None,
        json: Any | None = None,
    ):
        url = f"{self.base_url}{REST_PATH}/{table}"
        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceError(f"Backend request failed: {exc}") from exc
        if response.status_code >= 400:
            raise _error_from_response(response)
        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as exc:
            raise PersistenceError(f"Backend returned invalid JSON for {table}.") from exc


def _eq_params(eq: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    params = []
    for name, value in (eq or {}).items():
        if value is None:
            params.append((name, "is.null"))
        elif isinstance(value, bool):
            params.append((name, f"eq.{str(value).lower()}"))
        else:
            params.append((name, f"eq.{value}"))
    return params


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _error_from_response(response: requests.Response) -> PersistenceError:
    code = None
    detail = response.text
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        code = payload.get("code")
        detail = payload.get("message") or detail
    message = f"Backend error {response.status_code}: {detail}"
    if code == FOREIGN_KEY_VIOLATION:
        return ForeignKeyViolation(message, status_code=response.status_code, code=code)
    return PersistenceError(message, status_code=response.status_code, code=code)
