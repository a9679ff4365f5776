"""View models for the dashboard, reading tracker and attendance pages.

Loaders never raise on API failures: they log and hand back the state the
caller already had, so a page keeps showing stale data instead of an error.
"""

import logging
from typing import Any, Dict, List, Optional

from client import ApiError, Credential, SchoolRecordsClient

logger = logging.getLogger(__name__)

ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")
RECENT_COMPLAINTS = 5
CHART_POINTS = 7


def empty_dashboard() -> Dict[str, Any]:
    return {
        "students": [],
        "attendance": [],
        "attendance_counts": attendance_counts([]),
        "performance": [],
        "complaints": [],
        "recent_complaints": [],
        "reading_average": 0,
    }


def attendance_counts(records: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {status: 0 for status in ATTENDANCE_STATUSES}
    for r in records:
        if r.get("status") in counts:
            counts[r["status"]] += 1
    return counts


def load_dashboard(client: SchoolRecordsClient, credential: Credential,
                   previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    state = previous if previous is not None else empty_dashboard()
    try:
        students = client.list_students(credential)
        complaints = client.list_complaints(credential)
        attendance: List[Dict[str, Any]] = []
        performance: List[Dict[str, Any]] = []
        if credential.role == "parent":
            for s in students:
                attendance.extend(client.list_attendance(credential, student_id=s["id"]))
                performance.append(client.get_analytics(credential, s["id"]))
    except ApiError as e:
        logger.error("Error fetching dashboard data: %s", e)
        return state

    return {
        "students": students,
        "attendance": attendance,
        "attendance_counts": attendance_counts(attendance),
        "performance": performance,
        "complaints": complaints,
        "recent_complaints": complaints[:RECENT_COMPLAINTS],
        "reading_average": round(performance[0]["reading"]["average_minutes_per_day"]) if performance else 0,
    }


def reading_tracker(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Totals and chart series for a reading log as returned by the API.

    The log is most-recent-first, so the chart takes the first seven entries
    and reverses them into chronological order.
    """
    total = sum(e.get("minutes", 0) for e in entries)
    recent = list(reversed(entries[:CHART_POINTS]))
    return {
        "total_minutes": total,
        "average_minutes": round(total / len(entries)) if entries else 0,
        "chart": {
            "labels": [e.get("date") for e in recent],
            "minutes": [e.get("minutes", 0) for e in recent],
        },
    }


def load_reading_tracker(client: SchoolRecordsClient, credential: Credential, student_id: str,
                         previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    try:
        entries = client.get_reading_time(credential, student_id)
    except ApiError as e:
        logger.error("Error fetching reading data for %s: %s", student_id, e)
        return previous if previous is not None else reading_tracker([])
    return reading_tracker(entries)
