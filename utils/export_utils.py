"""
Click event export renderers.

Each renderer takes the projected event rows (nested dicts as stored) and
returns an ExportFile. JSON and XML keep the nesting so location, device and
campaign facts round-trip; CSV and XLSX flatten them into dotted columns
(``location.coordinates.latitude``).
"""

import csv
import io
import json
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, NamedTuple

from bson import ObjectId
from dicttoxml import dicttoxml
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font


class ExportFile(NamedTuple):
    content: bytes
    media_type: str
    filename: str


def to_serializable(value: Any) -> Any:
    """Convert Mongo values (datetime, ObjectId) into JSON-safe ones."""
    if isinstance(value, dict):
        return {key: to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    return value


def flatten_row(row: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in row.items():
        column = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_row(value, f"{column}."))
        else:
            flat[column] = value
    return flat


def _columns(flat_rows: Iterable[Dict[str, Any]]) -> List[str]:
    columns: List[str] = []
    seen = set()
    for row in flat_rows:
        for column in row:
            if column not in seen:
                seen.add(column)
                columns.append(column)
    return columns


def export_to_json(rows: List[Dict[str, Any]], name: str) -> ExportFile:
    payload = {"clicks": to_serializable(rows), "count": len(rows)}
    content = json.dumps(payload, indent=4).encode()
    return ExportFile(content, "application/json", f"{name}.json")


def export_to_csv(rows: List[Dict[str, Any]], name: str) -> ExportFile:
    flat_rows = [flatten_row(to_serializable(row)) for row in rows]
    columns = _columns(flat_rows)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, restval="", lineterminator="\n")
    writer.writeheader()
    writer.writerows(flat_rows)
    return ExportFile(output.getvalue().encode("utf-8"), "text/csv", f"{name}.csv")


def export_to_xlsx(rows: List[Dict[str, Any]], name: str) -> ExportFile:
    flat_rows = [flatten_row(to_serializable(row)) for row in rows]
    columns = _columns(flat_rows)

    wb = Workbook()
    ws = wb.active
    ws.title = "Clicks"
    ws.append(columns)

    bold_font = Font(bold=True)
    for cell in ws[1]:
        cell.font = bold_font
        cell.alignment = Alignment(horizontal="center")

    for row in flat_rows:
        ws.append([row.get(column) for column in columns])

    for index, column in enumerate(columns, start=1):
        ws.column_dimensions[ws.cell(row=1, column=index).column_letter].width = max(
            12, len(column) + 2
        )

    output = io.BytesIO()
    wb.save(output)
    return ExportFile(
        output.getvalue(),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        f"{name}.xlsx",
    )


def export_to_xml(rows: List[Dict[str, Any]], name: str) -> ExportFile:
    xml = dicttoxml(
        to_serializable(rows),
        custom_root="clicks",
        attr_type=False,
        item_func=lambda parent: "click",
    )
    return ExportFile(xml, "application/xml", f"{name}.xml")


EXPORTERS: Dict[str, Callable[[List[Dict[str, Any]], str], ExportFile]] = {
    "json": export_to_json,
    "csv": export_to_csv,
    "xlsx": export_to_xlsx,
    "xml": export_to_xml,
}


def render_export(rows: List[Dict[str, Any]], export_format: str, name: str) -> ExportFile:
    return EXPORTERS[export_format](rows, name)
