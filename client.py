"""
HTTP client for the School Records API.

Credentials are passed explicitly to every call instead of being attached to
a shared session header, so one client can serve several users at once.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from jose import jwt
from jose.exceptions import JWTError
from pydantic import BaseModel, ConfigDict

import config

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class CredentialExpired(ApiError):
    def __init__(self):
        super().__init__(401, "Credential expired")


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    user_id: Optional[str] = None
    role: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_token(cls, token: str) -> "Credential":
        """Read the claims without verifying; the server does the verification."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise ApiError(401, f"Malformed token: {e}")
        exp = claims.get("exp")
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None
        return cls(token=token, user_id=claims.get("sub"), role=claims.get("role"), expires_at=expires_at)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class SchoolRecordsClient:
    """Thin wrapper over the REST endpoints.

    ``session`` can be anything with a requests-style
    ``request(method, url, params=, json=, headers=)`` method.
    """

    def __init__(self, base_url: str, session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, credential: Optional[Credential] = None,
                 params: Optional[Dict[str, Any]] = None, json: Any = None) -> Any:
        headers = {}
        if credential is not None:
            if credential.is_expired():
                logger.info("Discarding expired credential for user %s", credential.user_id)
                raise CredentialExpired()
            headers[config.TOKEN_HEADER] = credential.token
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", params=params or None, json=json, headers=headers)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(503, str(e))
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = resp.text
            raise ApiError(resp.status_code, detail)
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(resp.status_code, f"Invalid JSON response: {e}")

    # Auth
    def login(self, email: str, password: str) -> Credential:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        return Credential.from_token(data["token"])

    def register(self, first_name: str, last_name: str, email: str, password: str, role: str = "parent",
                 credential: Optional[Credential] = None) -> Credential:
        """Sign up. Staff roles need an admin ``credential``."""
        data = self._request("POST", "/api/auth/register", credential, json={
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password": password,
            "role": role,
        })
        return Credential.from_token(data["token"])

    def me(self, credential: Credential) -> Dict[str, Any]:
        return self._request("GET", "/api/auth/me", credential)

    # Students
    def list_students(self, credential: Credential) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/students", credential)

    def get_student(self, credential: Credential, student_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/students/{student_id}", credential)

    def create_student(self, credential: Credential, **fields) -> Dict[str, Any]:
        return self._request("POST", "/api/students", credential, json=fields)

    def add_result(self, credential: Credential, student_id: str, subject: str, marks: float,
                   total_marks: float, exam_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._request("POST", f"/api/students/{student_id}/results", credential, json={
            "subject": subject, "marks": marks, "total_marks": total_marks, "exam_type": exam_type,
        })

    def add_pe_performance(self, credential: Credential, student_id: str, activity: str, performance: str,
                           teacher_remarks: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._request("POST", f"/api/students/{student_id}/pe-performance", credential, json={
            "activity": activity, "performance": performance, "teacher_remarks": teacher_remarks,
        })

    def add_reading_time(self, credential: Credential, student_id: str, minutes: float, book_title: str,
                         teacher_remarks: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._request("POST", f"/api/students/{student_id}/reading-time", credential, json={
            "minutes": minutes, "book_title": book_title, "teacher_remarks": teacher_remarks,
        })

    def get_reading_time(self, credential: Credential, student_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/api/students/{student_id}/reading-time", credential)

    # Attendance
    def list_attendance(self, credential: Credential, student_id: Optional[str] = None,
                        start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/attendance", credential, params={
            "student_id": student_id, "start_date": start_date, "end_date": end_date,
        })

    def mark_attendance(self, credential: Credential, student_id: str, status: str, reason: str = "",
                        late_minutes: float = 0) -> Dict[str, Any]:
        return self._request("POST", "/api/attendance", credential, json={
            "student_id": student_id, "status": status, "reason": reason, "late_minutes": late_minutes,
        })

    def update_attendance(self, credential: Credential, attendance_id: str, **changes) -> Dict[str, Any]:
        return self._request("PUT", f"/api/attendance/{attendance_id}", credential, json=changes)

    def acknowledge_attendance(self, credential: Credential, attendance_id: str, response: str = "") -> Dict[str, Any]:
        return self._request("POST", f"/api/attendance/{attendance_id}/acknowledge", credential,
                             json={"response": response})

    # Complaints
    def list_complaints(self, credential: Credential) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/complaints", credential)

    def create_complaint(self, credential: Credential, student_id: str, type: str, title: str, description: str,
                         priority: str = "medium") -> Dict[str, Any]:
        return self._request("POST", "/api/complaints", credential, json={
            "student_id": student_id, "type": type, "title": title,
            "description": description, "priority": priority,
        })

    def respond_to_complaint(self, credential: Credential, complaint_id: str, message: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/complaints/{complaint_id}/responses", credential,
                             json={"message": message})

    def update_complaint_status(self, credential: Credential, complaint_id: str, status: str,
                                resolution: Optional[str] = None) -> Dict[str, Any]:
        return self._request("PUT", f"/api/complaints/{complaint_id}/status", credential,
                             json={"status": status, "resolution": resolution})

    # Performance
    def get_performance(self, credential: Credential, student_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/performance/{student_id}", credential)

    def get_analytics(self, credential: Credential, student_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/performance/{student_id}/analytics", credential)

    def add_comment(self, credential: Credential, student_id: str, type: str, comment: str) -> List[Dict[str, Any]]:
        return self._request("POST", f"/api/performance/{student_id}/comments", credential,
                             json={"type": type, "comment": comment})
