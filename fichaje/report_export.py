"""Report export helpers for the admin entries listing."""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from fichaje.models import ClockEvent, User, as_utc


CSV_BOM = "\ufeff"
CSV_SEPARATOR = ";"
MONTHLY_REPORT_HEADERS = ["Empleado", "Tipo", "Fecha", "Hora"]
MONTH_NAMES = [
    "Enero",
    "Febrero",
    "Marzo",
    "Abril",
    "Mayo",
    "Junio",
    "Julio",
    "Agosto",
    "Septiembre",
    "Octubre",
    "Noviembre",
    "Diciembre",
]


def to_csv_bytes(headers: list[str], rows: Iterable[list[Any]], separator: str = CSV_SEPARATOR) -> bytes:
    # Excel only detects UTF-8 with the BOM and splits columns on ';' in es-ES locales.
    out = io.StringIO()
    out.write(CSV_BOM)
    writer = csv.writer(out, delimiter=separator, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_stringify(value) for value in row])
    return out.getvalue().encode("utf-8")


def entry_rows(rows: Iterable[tuple[ClockEvent, User]], tz: ZoneInfo) -> list[list[str]]:
    report_rows: list[list[str]] = []
    for clock_event, user in rows:
        local_ts = as_utc(clock_event.timestamp).astimezone(tz)
        report_rows.append(
            [
                user.full_name or "Desconocido",
                clock_event.entry_type.label,
                local_ts.strftime("%d/%m/%Y"),
                local_ts.strftime("%H:%M:%S"),
            ]
        )
    return report_rows


def entry_payload(clock_event: ClockEvent, user: User, tz: ZoneInfo) -> dict[str, Any]:
    payload = clock_event.to_dict()
    payload["timestamp_local"] = as_utc(clock_event.timestamp).astimezone(tz).isoformat()
    payload["profile"] = {"full_name": user.full_name or "Desconocido", "email": user.email}
    return payload


def monthly_report_filename(full_name: str | None, year: int, month: int) -> str:
    safe_name = re.sub(r"\s+", "_", (full_name or "Desconocido").strip()) or "Desconocido"
    safe_name = re.sub(r"[^\w\-]", "", safe_name)
    return f"Informe_{safe_name}_{MONTH_NAMES[month - 1]}_{year}.csv"


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
