"""
Database Schemas for the School Records system

Each Pydantic model represents a collection in MongoDB.
Collection name is lowercase of class name (see database.collection_name).
Embedded log entries are plain sub-models stored inside the student document.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from database import utcnow

Role = Literal["admin", "teacher", "parent"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
ComplaintType = Literal["academic", "behavioral", "facility", "other"]
ComplaintPriority = Literal["low", "medium", "high", "urgent"]
ComplaintStatus = Literal["pending", "in-progress", "resolved"]


class User(BaseModel):
    first_name: str
    last_name: str
    email: str = Field(..., description="Login email, unique")
    password_hash: str
    role: Role = Field("parent", description="admin|teacher|parent")


# Embedded logs, stored most-recent-first
class AcademicResult(BaseModel):
    subject: str
    marks: float
    total_marks: float
    exam_type: Optional[str] = Field(None, description="e.g., Midterm, Final, Unit Test")
    date: datetime = Field(default_factory=utcnow)
    teacher_remarks: Optional[str] = None


class PEPerformance(BaseModel):
    activity: str
    performance: str = Field(..., description="Free-form label, e.g. Excellent")
    teacher_remarks: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)


class ReadingEntry(BaseModel):
    minutes: float
    book_title: str
    teacher_remarks: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)


class Student(BaseModel):
    first_name: str
    last_name: str
    roll_number: str = Field(..., description="School-issued student ID, unique")
    grade: str
    section: str
    parent_id: str = Field(..., description="User _id of the parent as string")
    academic_results: List[AcademicResult] = Field(default_factory=list)
    pe_performance: List[PEPerformance] = Field(default_factory=list)
    reading_time: List[ReadingEntry] = Field(default_factory=list)


class Attendance(BaseModel):
    student_id: str
    date: datetime
    status: AttendanceStatus
    reason: str = ""
    late_minutes: float = 0
    verified_by: str = Field(..., description="User _id of the teacher/admin who marked it")
    notified_parent: bool = False
    parent_acknowledged: bool = False
    parent_response: str = ""


class ComplaintResponse(BaseModel):
    user_id: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class Resolution(BaseModel):
    description: Optional[str] = None
    resolved_by: str
    resolved_at: datetime = Field(default_factory=utcnow)


class Complaint(BaseModel):
    student_id: str
    submitted_by: str
    assigned_to: Optional[str] = None
    type: ComplaintType
    title: str
    description: str
    priority: ComplaintPriority = "medium"
    status: ComplaintStatus = "pending"
    responses: List[ComplaintResponse] = Field(default_factory=list)
    resolution: Optional[Resolution] = None
