"""
Appointment reporting Lambda handlers (admin only).

Implements:
- getAppointmentStats: Status totals, revenue, popular slots, instructor performance
- requestAppointmentReport: Excel/CSV export of appointments uploaded to S3
"""

import csv
import os
import uuid
from datetime import date, datetime, timedelta, timezone
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional, Tuple

import boto3
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.appsync_types import get_argument, get_input  # type: ignore[import-not-found]
    from utils.auth import require_admin  # type: ignore[import-not-found]
    from utils.clock import local_today  # type: ignore[import-not-found]
    from utils.dynamodb import from_dynamo, scan_all, tables  # type: ignore[import-not-found]
    from utils.errors import AppError, ErrorCode  # type: ignore[import-not-found]
    from utils.identity import get_display_name, get_identity_service  # type: ignore[import-not-found]
    from utils.ids import appointment_reference  # type: ignore[import-not-found]
    from utils.logging import get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.validation import validate_choice, validate_date  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.appsync_types import get_argument, get_input
    from ..utils.auth import require_admin
    from ..utils.clock import local_today
    from ..utils.dynamodb import from_dynamo, scan_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import get_display_name, get_identity_service
    from ..utils.ids import appointment_reference
    from ..utils.logging import get_correlation_id, get_logger
    from ..utils.validation import validate_choice, validate_date

PERIODS = ["week", "month", "quarter", "year"]
STATUSES = ["pending", "confirmed", "completed", "cancelled", "no_show"]
POPULAR_SLOT_LIMIT = 10

# Module-level proxy that tests can monkeypatch
s3_client: object | None = None


def _get_s3_client():
    """Return the S3 client (module-level override for tests, otherwise a fresh boto3 client)."""
    global s3_client
    if s3_client is not None:
        return s3_client
    return boto3.client("s3", endpoint_url=os.getenv("S3_ENDPOINT"))


def resolve_period(
    period: str, start: Optional[str], end: Optional[str], today: Optional[date] = None
) -> Tuple[str, str]:
    """
    Date range for a stats request.

    An explicit start/end pair wins; otherwise ``week`` is the last seven days
    and ``month``/``quarter``/``year`` start at the beginning of the current one.
    """
    today = today or local_today()
    if start and end:
        return validate_date(start, "startDate"), validate_date(end, "endDate")
    if period == "week":
        first = today - timedelta(days=7)
    elif period == "quarter":
        first = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
    elif period == "year":
        first = date(today.year, 1, 1)
    else:
        first = date(today.year, today.month, 1)
    return first.isoformat(), today.isoformat()


def _load_appointments(
    start: Optional[str], end: Optional[str], instructor_id: Optional[str], status: Optional[str] = None
) -> List[Dict[str, Any]]:
    appointments = [from_dynamo(a) for a in scan_all(tables.appointments)]
    result = []
    for appointment in appointments:
        day = appointment.get("appointmentDate", "")
        if start and day < start:
            continue
        if end and day > end:
            continue
        if instructor_id and appointment.get("instructorId") != instructor_id:
            continue
        if status and appointment.get("status") != status:
            continue
        result.append(appointment)
    return result


def _price_map() -> Dict[str, float]:
    return {
        t["appointmentTypeId"]: float(from_dynamo(t.get("price")) or 0)
        for t in scan_all(tables.appointment_types)
    }


def _instructor_name(instructor_id: str) -> str:
    identity = get_identity_service().get_identity_by_id(instructor_id)
    return get_display_name(identity["profile"]) if identity else "Unknown"


def calculate_stats(
    appointments: List[Dict[str, Any]],
    prices: Dict[str, float],
    month_appointments: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Aggregate a list of appointments. Revenue counts completed appointments only."""
    by_status = {status: 0 for status in STATUSES}
    slot_counts: Dict[str, int] = {}
    performance: Dict[str, Dict[str, Any]] = {}
    revenue_total = 0.0

    for appointment in appointments:
        status = appointment.get("status", "")
        if status in by_status:
            by_status[status] += 1
        slot = str(appointment.get("startTime", ""))[:5]
        slot_counts[slot] = slot_counts.get(slot, 0) + 1

        price = prices.get(appointment.get("appointmentTypeId", ""), 0.0)
        instructor_id = appointment.get("instructorId", "")
        entry = performance.setdefault(
            instructor_id,
            {"instructorId": instructor_id, "totalBookings": 0, "completedBookings": 0, "revenue": 0.0},
        )
        entry["totalBookings"] += 1
        if status == "completed":
            entry["completedBookings"] += 1
            entry["revenue"] += price
            revenue_total += price

    popular = sorted(slot_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:POPULAR_SLOT_LIMIT]
    instructors = []
    for entry in performance.values():
        total = entry["totalBookings"]
        instructors.append(
            {
                "instructorId": entry["instructorId"],
                "instructorName": _instructor_name(entry["instructorId"]),
                "totalBookings": total,
                "completionRate": round(entry["completedBookings"] / total, 2) if total else 0,
                "revenue": entry["revenue"],
            }
        )
    instructors.sort(key=lambda i: i["totalBookings"], reverse=True)

    return {
        "totalAppointments": len(appointments),
        "pendingAppointments": by_status["pending"],
        "confirmedAppointments": by_status["confirmed"],
        "completedAppointments": by_status["completed"],
        "cancelledAppointments": by_status["cancelled"],
        "noShowAppointments": by_status["no_show"],
        "revenueTotal": revenue_total,
        "revenueThisMonth": sum(
            prices.get(a.get("appointmentTypeId", ""), 0.0)
            for a in month_appointments
            if a.get("status") == "completed"
        ),
        "popularTimeSlots": [{"timeSlot": slot, "bookingCount": count} for slot, count in popular],
        "instructorPerformance": instructors,
    }


def get_appointment_stats(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    GraphQL query: getAppointmentStats(period, instructorId, startDate, endDate)

    Returns:
        { stats, meta: { period, startDate, endDate, instructorId } }
    """
    logger = get_logger(__name__, get_correlation_id(event))
    require_admin(event)
    try:
        period = validate_choice(get_argument(event, "period") or "month", PERIODS, "period")
        instructor_id = get_argument(event, "instructorId")
        start, end = resolve_period(period, get_argument(event, "startDate"), get_argument(event, "endDate"))

        appointments = _load_appointments(start, end, instructor_id)
        month_start, month_end = resolve_period("month", None, None)
        month_appointments = _load_appointments(month_start, month_end, instructor_id)
        stats = calculate_stats(appointments, _price_map(), month_appointments)

        logger.info("Appointment stats computed", start=start, end=end, total=stats["totalAppointments"])
        return {
            "stats": stats,
            "meta": {"period": period, "startDate": start, "endDate": end, "instructorId": instructor_id},
        }
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to compute appointment stats", error=str(e))
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to fetch appointment statistics")


def request_appointment_report(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Generate an appointment report and upload to S3.

    GraphQL mutation: requestAppointmentReport(input: {format, startDate, endDate, instructorId, status})

    Returns:
        {
          reportId: String!
          reportUrl: String
          rowCount: Int!
          status: String!
          createdAt: String!
          expiresAt: String
        }
    """
    logger = get_logger(__name__, get_correlation_id(event))

    try:
        admin = require_admin(event)
        args = get_input(event)
        report_format = str(args.get("format") or "xlsx").lower()
        validate_choice(report_format, ["xlsx", "csv"], "format")
        start = validate_date(args["startDate"], "startDate") if args.get("startDate") else None
        end = validate_date(args["endDate"], "endDate") if args.get("endDate") else None

        appointments = _load_appointments(start, end, args.get("instructorId"), args.get("status"))
        appointments.sort(key=lambda a: (a.get("appointmentDate", ""), a.get("startTime", "")))
        rows = _report_rows(appointments)

        logger.info("Generating appointment report", format=report_format, rows=len(rows), admin_id=admin["userId"])

        if report_format == "csv":
            report_content = _generate_csv_report(rows)
            content_type = "text/csv"
        else:
            report_content = _generate_excel_report(rows)
            content_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

        now = datetime.now(timezone.utc)
        report_id = f"REPORT#{now.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"
        exports_bucket = os.getenv("EXPORTS_BUCKET", "aiedulog-exports-dev")
        s3_key = f"reports/appointments/{report_id}.{report_format}"

        s3 = _get_s3_client()
        s3.put_object(
            Bucket=exports_bucket,
            Key=s3_key,
            Body=report_content,
            ContentType=content_type,
        )

        # Pre-signed URL valid for 7 days
        report_url = s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": exports_bucket, "Key": s3_key},
            ExpiresIn=7 * 24 * 60 * 60,
        )

        logger.info("Report generated successfully", report_id=report_id, s3_key=s3_key)
        return {
            "reportId": report_id,
            "reportUrl": report_url,
            "rowCount": len(rows),
            "status": "COMPLETED",
            "createdAt": now.isoformat(),
            "expiresAt": (now + timedelta(days=7)).isoformat(),
        }

    except AppError as e:
        return e.to_dict()  # type: ignore[no-any-return]
    except Exception as e:
        logger.error("Unexpected error generating report", error=str(e))
        error = AppError(ErrorCode.INTERNAL_ERROR, f"Failed to generate report: {str(e)}")
        return error.to_dict()  # type: ignore[no-any-return]


REPORT_HEADERS = [
    "Reference",
    "Date",
    "Start",
    "End",
    "Status",
    "Meeting Type",
    "Instructor",
    "User",
    "User Email",
    "Title",
]


def _report_rows(appointments: List[Dict[str, Any]]) -> List[List[Any]]:
    service = get_identity_service()
    rows = []
    for appointment in appointments:
        user = service.get_identity_by_id(appointment.get("userId", ""))
        user_profile = user["profile"] if user else None
        rows.append(
            [
                appointment_reference(appointment.get("appointmentId", "")),
                appointment.get("appointmentDate", ""),
                appointment.get("startTime", ""),
                appointment.get("endTime", ""),
                appointment.get("status", ""),
                appointment.get("meetingType", ""),
                _instructor_name(appointment.get("instructorId", "")),
                get_display_name(user_profile),
                (user_profile or {}).get("email", ""),
                appointment.get("title", ""),
            ]
        )
    return rows


def _generate_csv_report(rows: List[List[Any]]) -> bytes:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(REPORT_HEADERS)
    writer.writerows(rows)
    # BOM so spreadsheet apps detect UTF-8 (Korean names)
    return output.getvalue().encode("utf-8-sig")


def _generate_excel_report(rows: List[List[Any]]) -> bytes:
    """Generate Excel report with a styled header row."""
    wb = Workbook()
    ws = wb.active
    assert ws is not None, "Workbook must have an active worksheet"
    ws.title = "Appointments"

    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    for col, header in enumerate(REPORT_HEADERS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = header_fill
        cell.font = header_font

    for row in rows:
        ws.append(row)

    # Auto-size columns
    for column in ws.columns:
        column_letter = getattr(column[0], "column_letter", None)
        if column_letter is None:  # pragma: no cover
            continue
        max_length = max(len(str(cell.value or "")) for cell in column)
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
