"""
CSV and Excel rendering for audit logs and leave reports.
"""
import csv
import io
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

THIN = Side(style="thin")
HEADER_STYLE = {
    "font": Font(bold=True, color="FFFFFF"),
    "fill": PatternFill(start_color="366092", end_color="366092", fill_type="solid"),
    "alignment": Alignment(horizontal="center", vertical="center"),
    "border": Border(left=THIN, right=THIN, top=THIN, bottom=THIN),
}

LEAVE_REPORT_COLUMNS: List[Tuple[str, str]] = [
    ("id", "Leave ID"),
    ("employee_name", "Employee"),
    ("department", "Department"),
    ("leave_type_name", "Leave Type"),
    ("start_date", "Start Date"),
    ("end_date", "End Date"),
    ("number_of_days", "Days"),
    ("status", "Status"),
    ("reason", "Reason"),
    ("approved_at", "Decided At"),
    ("created_at", "Applied At"),
]

AUDIT_COLUMNS: List[Tuple[str, str]] = [
    ("id", "ID"),
    ("timestamp", "Timestamp"),
    ("user_id", "User ID"),
    ("user_role", "Role"),
    ("action", "Action"),
    ("entity_type", "Entity Type"),
    ("entity_id", "Entity ID"),
    ("category", "Category"),
    ("severity", "Severity"),
    ("is_successful", "Successful"),
    ("ip_address", "IP Address"),
    ("error_message", "Error"),
]


def _cell_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        # openpyxl rejects tz-aware datetimes
        return value.replace(tzinfo=None)
    if isinstance(value, (dict, list)):
        return str(value)
    return value


def export_filename(prefix: str, extension: str, today: date = None) -> str:
    return f"{prefix}-{(today or date.today()).isoformat()}.{extension}"


def rows_to_csv(rows: Sequence[Dict[str, Any]], columns: Sequence[Tuple[str, str]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([label for _, label in columns])
    for row in rows:
        writer.writerow([_cell_value(row.get(key)) for key, _ in columns])
    return buffer.getvalue().encode("utf-8")


def rows_to_xlsx(rows: Sequence[Dict[str, Any]], columns: Sequence[Tuple[str, str]], sheet_title: str) -> bytes:
    workbook = Workbook()
    ws = workbook.active
    ws.title = sheet_title[:31]

    for col, (_, label) in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col, value=label)
        for attr, value in HEADER_STYLE.items():
            setattr(cell, attr, value)

    for row_idx, row in enumerate(rows, 2):
        for col, (key, _) in enumerate(columns, 1):
            ws.cell(row=row_idx, column=col, value=_cell_value(row.get(key)))

    for column_cells in ws.columns:
        length = max(len(str(cell.value if cell.value is not None else "")) for cell in column_cells)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(length + 2, 50)
    ws.freeze_panes = "A2"

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def render(rows: Sequence[Dict[str, Any]], columns: Sequence[Tuple[str, str]], fmt: str, sheet_title: str) -> Tuple[bytes, str, str]:
    """Returns (content, media type, file extension)."""
    if fmt == "csv":
        return rows_to_csv(rows, columns), CSV_MEDIA_TYPE, "csv"
    return rows_to_xlsx(rows, columns, sheet_title), XLSX_MEDIA_TYPE, "xlsx"


def audit_log_to_row(log) -> Dict[str, Any]:
    return {key: getattr(log, key, None) for key, _ in AUDIT_COLUMNS}
