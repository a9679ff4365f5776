"""Performance summaries computed from a student's embedded logs."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import TypeAdapter

READING_WINDOW_DAYS = 30

_datetime_adapter = TypeAdapter(datetime)


def _as_naive_utc(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return _as_naive_utc(_datetime_adapter.validate_python(value))
    return value


def academic_summary(results: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Group results by subject.

    The average is weighted by total marks: sum(marks) / sum(total_marks),
    so a 200-mark exam counts twice as much as a 100-mark one.
    """
    summary: Dict[str, Dict[str, Any]] = {}
    for r in results:
        entry = summary.setdefault(r.get("subject"), {"total_marks": 0, "total_max_marks": 0, "exam_count": 0})
        entry["total_marks"] += r.get("marks", 0)
        entry["total_max_marks"] += r.get("total_marks", 0)
        entry["exam_count"] += 1
    for entry in summary.values():
        if entry["total_max_marks"]:
            entry["average_percentage"] = entry["total_marks"] / entry["total_max_marks"] * 100
        else:
            entry["average_percentage"] = None
    return summary


def pe_summary(entries: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for e in entries:
        grouped.setdefault(e.get("activity"), []).append({
            "performance": e.get("performance"),
            "date": e.get("date"),
        })
    return grouped


def reading_summary(entries: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = _as_naive_utc(now) if now is not None else datetime.now(timezone.utc).replace(tzinfo=None)
    window_start = now - timedelta(days=READING_WINDOW_DAYS)

    trend = sorted(
        ({"date": e.get("date"), "minutes": e.get("minutes", 0)} for e in entries),
        key=lambda t: _as_naive_utc(t["date"]) or datetime.min,
    )
    recent_minutes = sum(
        e.get("minutes", 0) for e in entries
        if e.get("date") is not None and _as_naive_utc(e["date"]) >= window_start
    )
    # Fixed divisor: days without reading count as zero.
    return {
        "total_minutes": sum(e.get("minutes", 0) for e in entries),
        "average_minutes_per_day": recent_minutes / READING_WINDOW_DAYS,
        "books_read": len({e.get("book_title") for e in entries}),
        "daily_reading_trend": trend,
    }


def student_analytics(student: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "academic": academic_summary(student.get("academic_results") or []),
        "pe": pe_summary(student.get("pe_performance") or []),
        "reading": reading_summary(student.get("reading_time") or [], now=now),
    }
