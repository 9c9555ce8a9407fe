from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

from flask import request, send_file, g
from flask_babel import gettext as _

from ..errors import ApiError
from .export import ExportSheet, build_workbook, render_sheet_pdf
from .numbers import parse_date, end_of_day

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError(_("Request body must be a JSON object"))
    return data


def require_fields(data: Dict[str, Any], *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ApiError(_("Missing required fields: %(f)s", f=", ".join(missing)), code="VALIDATION_ERROR")


def date_range_args() -> Tuple[Optional[Any], Optional[Any]]:
    """``start_date``/``end_date`` query args; a date-only end includes the whole day."""
    raw_start = request.args.get("start_date")
    raw_end = request.args.get("end_date")
    start = parse_date(raw_start)
    end = parse_date(raw_end)
    if (raw_start and start is None) or (raw_end and end is None):
        raise ApiError(_("Dates must be ISO formatted (YYYY-MM-DD)"), code="VALIDATION_ERROR")
    return start, end_of_day(end)


def int_arg(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ApiError(_("%(name)s must be an integer", name=name), code="VALIDATION_ERROR")


def parse_id(value: Any, field: str) -> int:
    """An id from the request body; non-numeric input is a validation error."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ApiError(_("%(field)s must be an integer", field=field), code="VALIDATION_ERROR")


def locale() -> str:
    return getattr(g, "lang_code", None) or "en"


def export_response(sheets: List[ExportSheet], filename: str, fmt: str, title: Optional[str] = None,
                    subtitle: Optional[str] = None):
    """Send sheets as an .xlsx workbook or (first sheet) as a PDF table."""
    if fmt == "xlsx":
        buf = BytesIO(build_workbook(sheets))
        return send_file(buf, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=f"{filename}.xlsx")
    if fmt == "pdf":
        buf = BytesIO(render_sheet_pdf(sheets[0], title or sheets[0].sheet_name, subtitle))
        return send_file(buf, mimetype="application/pdf", as_attachment=True, download_name=f"{filename}.pdf")
    raise ApiError(_("Unsupported export format"), code="VALIDATION_ERROR")
