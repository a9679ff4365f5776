"""
Role and ownership rules.

Everything here is a pure function of the caller (role + user id), the action
being attempted and, where relevant, the student the target record belongs
to. Endpoints translate a ``False`` into HTTP 403.
"""

from enum import Enum
from typing import Any, Dict, Optional

ADMIN = "admin"
TEACHER = "teacher"
PARENT = "parent"
ROLES = (ADMIN, TEACHER, PARENT)


class Action(str, Enum):
    VIEW_STUDENT = "view_student"
    CREATE_STUDENT = "create_student"
    RECORD_PERFORMANCE = "record_performance"
    ADD_REMARK = "add_remark"
    MARK_ATTENDANCE = "mark_attendance"
    UPDATE_ATTENDANCE = "update_attendance"
    ACKNOWLEDGE_ATTENDANCE = "acknowledge_attendance"
    CREATE_COMPLAINT = "create_complaint"
    RESPOND_COMPLAINT = "respond_complaint"
    UPDATE_COMPLAINT_STATUS = "update_complaint_status"
    CREATE_STAFF_ACCOUNT = "create_staff_account"


# Denied to parents outright, whatever the target.
STAFF_ONLY = {
    Action.CREATE_STUDENT,
    Action.RECORD_PERFORMANCE,
    Action.ADD_REMARK,
    Action.MARK_ATTENDANCE,
    Action.UPDATE_ATTENDANCE,
    Action.UPDATE_COMPLAINT_STATUS,
}

# Allowed to parents only for their own child.
OWNER_SCOPED = {
    Action.VIEW_STUDENT,
    Action.CREATE_COMPLAINT,
    Action.RESPOND_COMPLAINT,
}


def owns_student(identity: str, student: Optional[Dict[str, Any]]) -> bool:
    if not student:
        return False
    return str(student.get("parent_id")) == str(identity)


def authorize(role: str, identity: str, action: Action, student: Optional[Dict[str, Any]] = None) -> bool:
    """Return True when ``role``/``identity`` may perform ``action``.

    ``student`` is the student document the target belongs to, or ``None``
    for actions that do not concern a particular student. Unknown roles are
    always denied.
    """
    if role not in ROLES:
        return False
    if action == Action.ACKNOWLEDGE_ATTENDANCE:
        return role == PARENT and owns_student(identity, student)
    if action == Action.CREATE_STAFF_ACCOUNT:
        return role == ADMIN
    if role != PARENT:
        return True
    if action in STAFF_ONLY:
        return False
    if action in OWNER_SCOPED:
        return owns_student(identity, student)
    return False


def student_scope(role: str, identity: str) -> Optional[Dict[str, Any]]:
    """Mongo filter restricting student queries to the caller, or None for all."""
    if role == PARENT:
        return {"parent_id": str(identity)}
    return None
