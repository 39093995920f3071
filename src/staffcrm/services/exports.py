from __future__ import annotations

import csv
from collections.abc import Iterable
from pathlib import Path

from openpyxl import Workbook

from staffcrm.services.companies import ACTIVITIES, COMPANIES, CONTACTS, NOTES
from staffcrm.store.base import Row, TableStore

TABLES = [COMPANIES, CONTACTS, NOTES, ACTIVITIES]


def export_excel(store: TableStore, out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)

    for table in TABLES:
        rows = store.select(table, order_by="created_date")
        ws = wb.create_sheet(title=table)
        _write_sheet(ws, rows)

    wb.save(out_path)


def export_csv_tables(store: TableStore, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for table in TABLES:
        rows = store.select(table, order_by="created_date")
        headers = _headers(rows)
        csv_path = out_dir / f"{table}.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            for row in rows:
                writer.writerow([row.get(h) for h in headers])


def _headers(rows: list[Row]) -> list[str]:
    headers: list[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)
    return headers


def _write_sheet(ws, rows: Iterable[Row]) -> None:
    rows = list(rows)
    if not rows:
        return
    headers = _headers(rows)
    ws.append(headers)
    for row in rows:
        ws.append([row.get(h) for h in headers])
