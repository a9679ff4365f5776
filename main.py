import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from analytics import student_analytics
from database import collection_name, create_document, ensure_indexes, get_db, get_documents, utcnow
from policy import PARENT, Action, student_scope
from schemas import (
    AcademicResult, Attendance, AttendanceStatus, Complaint, ComplaintPriority,
    ComplaintResponse, ComplaintStatus, ComplaintType, PEPerformance, ReadingEntry,
    Resolution, Role, Student, User,
)
from security import (
    create_access_token, ensure_allowed, get_current_user, get_optional_user, hash_password,
    require_permission, verify_password,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

USER = collection_name(User)
STUDENT = collection_name(Student)
ATTENDANCE = collection_name(Attendance)
COMPLAINT = collection_name(Complaint)

# Comment type -> embedded log it annotates
REMARK_LOGS = {
    "academic": "academic_results",
    "pe": "pe_performance",
    "reading": "reading_time",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_factory = app.dependency_overrides.get(get_db, get_db)
    try:
        ensure_indexes(db_factory())
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="School Records API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": "Record already exists"})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server Error"})


# -------------------- Helpers -------------------- #

def to_object_id(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail="Invalid id format")
    return ObjectId(id_str)


def serialize_doc(value: Any) -> Any:
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            if k == "_id":
                d["id"] = str(v)
            elif k != "password_hash":
                d[k] = serialize_doc(v)
        return d
    if isinstance(value, ObjectId):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def get_or_404(db: Database, collection: str, id_str: str, label: str) -> Dict[str, Any]:
    doc = db[collection].find_one({"_id": to_object_id(id_str)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def day_window(moment: datetime):
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def as_naive_utc(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return utcnow()
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def scoped_student_ids(db: Database, user: Dict[str, Any]) -> Optional[List[str]]:
    """Ids of the students a caller may list, or None when unrestricted."""
    scope = student_scope(user["role"], user["id"])
    if scope is None:
        return None
    return [str(s["_id"]) for s in db[STUDENT].find(scope, {"_id": 1})]


def summaries(db: Database, collection: str, ids: Iterable[Optional[str]], fields: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    fields = list(fields)
    oids = [ObjectId(i) for i in set(ids) if i and ObjectId.is_valid(i)]
    if not oids:
        return {}
    docs = db[collection].find({"_id": {"$in": oids}}, {f: 1 for f in fields})
    return {str(d["_id"]): {"id": str(d["_id"]), **{f: d.get(f) for f in fields}} for d in docs}


STUDENT_SUMMARY = ("first_name", "last_name", "roll_number")
USER_SUMMARY = ("first_name", "last_name", "role")


def populate_students(db: Database, students: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    parents = summaries(db, USER, (s.get("parent_id") for s in students), ("first_name", "last_name", "email"))
    return [{**s, "parent": parents.get(s.get("parent_id"))} for s in students]


def populate_attendance(db: Database, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    students = summaries(db, STUDENT, (r.get("student_id") for r in records), STUDENT_SUMMARY)
    users = summaries(db, USER, (r.get("verified_by") for r in records), USER_SUMMARY)
    return [
        {**r, "student": students.get(r.get("student_id")), "verifier": users.get(r.get("verified_by"))}
        for r in records
    ]


def populate_complaints(db: Database, complaints: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    students = summaries(db, STUDENT, (c.get("student_id") for c in complaints), STUDENT_SUMMARY)
    user_ids = []
    for c in complaints:
        user_ids += [c.get("submitted_by"), c.get("assigned_to")]
        user_ids += [r.get("user_id") for r in c.get("responses") or []]
        user_ids.append((c.get("resolution") or {}).get("resolved_by"))
    users = summaries(db, USER, user_ids, USER_SUMMARY)

    result = []
    for c in complaints:
        item = {
            **c,
            "student": students.get(c.get("student_id")),
            "submitter": users.get(c.get("submitted_by")),
            "assignee": users.get(c.get("assigned_to")),
            "responses": [{**r, "user": users.get(r.get("user_id"))} for r in c.get("responses") or []],
        }
        if c.get("resolution"):
            item["resolution"] = {**c["resolution"], "resolver": users.get(c["resolution"].get("resolved_by"))}
        result.append(item)
    return result


def prepend_log_entry(db: Database, student: Dict[str, Any], field: str, entry: BaseModel) -> List[Dict[str, Any]]:
    updated = db[STUDENT].find_one_and_update(
        {"_id": student["_id"]},
        {"$push": {field: {"$each": [entry.model_dump()], "$position": 0}}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return updated.get(field) or []


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "School Records API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    resp = {
        "backend": "running",
        "database": "not available",
        "database_name": config.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        resp["collections"] = db.list_collection_names()[:10]
        resp["database"] = "connected"
        resp["connection_status"] = "Connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        resp["database"] = f"error: {str(e)[:50]}"
    return resp


# -------------------- Auth -------------------- #

class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str = Field(..., min_length=6)
    # Anyone may sign up as a parent; staff roles need an admin token.
    role: Role = "parent"


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    token: str


@app.post("/api/auth/register", response_model=TokenResponse)
def register(payload: RegisterRequest, caller=Depends(get_optional_user), db: Database = Depends(get_db)):
    if payload.role != PARENT:
        if caller is None:
            raise HTTPException(status_code=401, detail="Staff accounts must be created by an admin")
        ensure_allowed(caller, Action.CREATE_STAFF_ACCOUNT)
    if db[USER].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    user_id = create_document(db, USER, user)
    logger.info("Registered %s user %s", user.role, user_id)
    return {"token": create_access_token(user_id, user.role)}


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db[USER].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"token": create_access_token(str(user["_id"]), user["role"])}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user), db: Database = Depends(get_db)):
    doc = get_or_404(db, USER, user["id"], "User")
    return serialize_doc(doc)


# -------------------- Students -------------------- #

class StudentCreate(BaseModel):
    first_name: str
    last_name: str
    roll_number: str
    grade: str
    section: str
    parent_id: str


class ResultCreate(BaseModel):
    subject: str
    marks: float
    total_marks: float
    exam_type: Optional[str] = None
    date: Optional[datetime] = None


class PECreate(BaseModel):
    activity: str
    performance: str
    teacher_remarks: Optional[str] = None
    date: Optional[datetime] = None


class ReadingCreate(BaseModel):
    minutes: float
    book_title: str
    teacher_remarks: Optional[str] = None
    date: Optional[datetime] = None


@app.get("/api/students")
def list_students(user=Depends(get_current_user), db: Database = Depends(get_db)):
    docs = get_documents(db, STUDENT, student_scope(user["role"], user["id"]), sort=[("last_name", 1), ("first_name", 1)])
    return serialize_doc(populate_students(db, docs))


@app.post("/api/students")
def create_student(payload: StudentCreate, user=Depends(require_permission(Action.CREATE_STUDENT)),
                   db: Database = Depends(get_db)):
    parent = get_or_404(db, USER, payload.parent_id, "Parent")
    if parent.get("role") != PARENT:
        raise HTTPException(status_code=400, detail="Referenced user is not a parent")
    if db[STUDENT].find_one({"roll_number": payload.roll_number}):
        raise HTTPException(status_code=409, detail="Student ID already exists")
    student_id = create_document(db, STUDENT, Student(**payload.model_dump()))
    logger.info("Student %s created by %s", student_id, user["id"])
    doc = db[STUDENT].find_one({"_id": ObjectId(student_id)})
    return serialize_doc(populate_students(db, [doc])[0])


@app.get("/api/students/{student_id}")
def get_student(student_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    ensure_allowed(user, Action.VIEW_STUDENT, student)
    return serialize_doc(populate_students(db, [student])[0])


@app.post("/api/students/{student_id}/results")
def add_result(student_id: str, payload: ResultCreate, user=Depends(require_permission(Action.RECORD_PERFORMANCE)),
               db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    entry = AcademicResult(**payload.model_dump(exclude={"date"}), date=as_naive_utc(payload.date))
    return serialize_doc(prepend_log_entry(db, student, "academic_results", entry))


@app.post("/api/students/{student_id}/pe-performance")
def add_pe_performance(student_id: str, payload: PECreate, user=Depends(require_permission(Action.RECORD_PERFORMANCE)),
                       db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    entry = PEPerformance(**payload.model_dump(exclude={"date"}), date=as_naive_utc(payload.date))
    return serialize_doc(prepend_log_entry(db, student, "pe_performance", entry))


@app.post("/api/students/{student_id}/reading-time")
def add_reading_time(student_id: str, payload: ReadingCreate, user=Depends(require_permission(Action.RECORD_PERFORMANCE)),
                     db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    entry = ReadingEntry(**payload.model_dump(exclude={"date"}), date=as_naive_utc(payload.date))
    return serialize_doc(prepend_log_entry(db, student, "reading_time", entry))


@app.get("/api/students/{student_id}/reading-time")
def get_reading_time(student_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    ensure_allowed(user, Action.VIEW_STUDENT, student)
    return serialize_doc(student.get("reading_time") or [])


# -------------------- Attendance -------------------- #

class AttendanceCreate(BaseModel):
    student_id: str
    status: AttendanceStatus
    reason: str = ""
    late_minutes: float = 0
    date: Optional[datetime] = None


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = None
    reason: Optional[str] = None
    late_minutes: Optional[float] = None


class AcknowledgeRequest(BaseModel):
    response: str = ""


def attendance_view(db: Database, record_id) -> Dict[str, Any]:
    doc = db[ATTENDANCE].find_one({"_id": record_id})
    return serialize_doc(populate_attendance(db, [doc])[0])


@app.get("/api/attendance")
def list_attendance(student_id: Optional[str] = None, start_date: Optional[datetime] = None,
                    end_date: Optional[datetime] = None, user=Depends(get_current_user),
                    db: Database = Depends(get_db)):
    query: Dict[str, Any] = {}
    allowed = scoped_student_ids(db, user)
    if allowed is None:
        if student_id:
            query["student_id"] = student_id
    elif student_id:
        query["student_id"] = student_id if student_id in allowed else {"$in": []}
    else:
        query["student_id"] = {"$in": allowed}

    if start_date or end_date:
        rng: Dict[str, Any] = {}
        if start_date:
            rng["$gte"] = as_naive_utc(start_date)
        if end_date:
            rng["$lte"] = as_naive_utc(end_date)
        query["date"] = rng

    docs = get_documents(db, ATTENDANCE, query, sort=[("date", -1)])
    return serialize_doc(populate_attendance(db, docs))


@app.post("/api/attendance")
def mark_attendance(payload: AttendanceCreate, user=Depends(require_permission(Action.MARK_ATTENDANCE)),
                    db: Database = Depends(get_db)):
    get_or_404(db, STUDENT, payload.student_id, "Student")
    when = as_naive_utc(payload.date)
    start, end = day_window(when)
    # Check-then-insert; two concurrent requests can both pass this check.
    existing = db[ATTENDANCE].find_one({"student_id": payload.student_id, "date": {"$gte": start, "$lt": end}})
    if existing:
        logger.warning("Attendance for student %s already marked on %s", payload.student_id, start.date())
        raise HTTPException(status_code=409, detail="Attendance already marked for this day")

    record = Attendance(
        student_id=payload.student_id,
        date=when,
        status=payload.status,
        reason=payload.reason,
        late_minutes=payload.late_minutes,
        verified_by=user["id"],
    )
    record_id = create_document(db, ATTENDANCE, record)
    return attendance_view(db, ObjectId(record_id))


@app.put("/api/attendance/{attendance_id}")
def update_attendance(attendance_id: str, payload: AttendanceUpdate,
                      user=Depends(require_permission(Action.UPDATE_ATTENDANCE)),
                      db: Database = Depends(get_db)):
    record = get_or_404(db, ATTENDANCE, attendance_id, "Attendance record")
    changes = payload.model_dump(exclude_none=True)
    changes.update({"verified_by": user["id"], "updated_at": utcnow()})
    db[ATTENDANCE].update_one({"_id": record["_id"]}, {"$set": changes})
    return attendance_view(db, record["_id"])


@app.post("/api/attendance/{attendance_id}/acknowledge")
def acknowledge_attendance(attendance_id: str, payload: AcknowledgeRequest, user=Depends(get_current_user),
                           db: Database = Depends(get_db)):
    if user["role"] != PARENT:
        raise HTTPException(status_code=403, detail="Not authorized")
    record = get_or_404(db, ATTENDANCE, attendance_id, "Attendance record")
    student = db[STUDENT].find_one({"_id": to_object_id(record["student_id"])})
    ensure_allowed(user, Action.ACKNOWLEDGE_ATTENDANCE, student)
    db[ATTENDANCE].update_one(
        {"_id": record["_id"]},
        {"$set": {"parent_acknowledged": True, "parent_response": payload.response, "updated_at": utcnow()}},
    )
    return attendance_view(db, record["_id"])


# -------------------- Complaints -------------------- #

class ComplaintCreate(BaseModel):
    student_id: str
    type: ComplaintType
    title: str
    description: str
    priority: ComplaintPriority = "medium"
    assigned_to: Optional[str] = None


class ComplaintResponseCreate(BaseModel):
    message: str


class ComplaintStatusUpdate(BaseModel):
    status: ComplaintStatus
    resolution: Optional[str] = None


def complaint_view(db: Database, complaint_id) -> Dict[str, Any]:
    doc = db[COMPLAINT].find_one({"_id": complaint_id})
    return serialize_doc(populate_complaints(db, [doc])[0])


@app.get("/api/complaints")
def list_complaints(user=Depends(get_current_user), db: Database = Depends(get_db)):
    allowed = scoped_student_ids(db, user)
    query = None if allowed is None else {"student_id": {"$in": allowed}}
    docs = get_documents(db, COMPLAINT, query, sort=[("created_at", -1)])
    return serialize_doc(populate_complaints(db, docs))


@app.post("/api/complaints")
def create_complaint(payload: ComplaintCreate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, payload.student_id, "Student")
    ensure_allowed(user, Action.CREATE_COMPLAINT, student)
    complaint = Complaint(**payload.model_dump(), submitted_by=user["id"])
    complaint_id = create_document(db, COMPLAINT, complaint)
    logger.info("Complaint %s filed by %s for student %s", complaint_id, user["id"], payload.student_id)
    return complaint_view(db, ObjectId(complaint_id))


@app.post("/api/complaints/{complaint_id}/responses")
def add_complaint_response(complaint_id: str, payload: ComplaintResponseCreate, user=Depends(get_current_user),
                           db: Database = Depends(get_db)):
    complaint = get_or_404(db, COMPLAINT, complaint_id, "Complaint")
    student = db[STUDENT].find_one({"_id": to_object_id(complaint["student_id"])})
    ensure_allowed(user, Action.RESPOND_COMPLAINT, student)
    response = ComplaintResponse(user_id=user["id"], message=payload.message)
    db[COMPLAINT].update_one(
        {"_id": complaint["_id"]},
        {"$push": {"responses": response.model_dump()}, "$set": {"updated_at": utcnow()}},
    )
    return complaint_view(db, complaint["_id"])


@app.put("/api/complaints/{complaint_id}/status")
def update_complaint_status(complaint_id: str, payload: ComplaintStatusUpdate,
                            user=Depends(require_permission(Action.UPDATE_COMPLAINT_STATUS)),
                            db: Database = Depends(get_db)):
    complaint = get_or_404(db, COMPLAINT, complaint_id, "Complaint")
    changes: Dict[str, Any] = {"status": payload.status, "updated_at": utcnow()}
    if payload.status == "resolved":
        changes["resolution"] = Resolution(description=payload.resolution, resolved_by=user["id"]).model_dump()
    db[COMPLAINT].update_one({"_id": complaint["_id"]}, {"$set": changes})
    logger.info("Complaint %s moved to %s by %s", complaint_id, payload.status, user["id"])
    return complaint_view(db, complaint["_id"])


# -------------------- Performance -------------------- #

class CommentCreate(BaseModel):
    type: str
    comment: str


def viewable_student(db: Database, user: Dict[str, Any], student_id: str) -> Dict[str, Any]:
    student = get_or_404(db, STUDENT, student_id, "Student")
    ensure_allowed(user, Action.VIEW_STUDENT, student)
    return student


@app.get("/api/performance/{student_id}")
def get_performance(student_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    student = viewable_student(db, user, student_id)
    return serialize_doc({
        "academic_results": student.get("academic_results") or [],
        "pe_performance": student.get("pe_performance") or [],
        "reading_time": student.get("reading_time") or [],
    })


@app.get("/api/performance/{student_id}/analytics")
def get_performance_analytics(student_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    student = viewable_student(db, user, student_id)
    return serialize_doc(student_analytics(student))


@app.post("/api/performance/{student_id}/comments")
def add_performance_comment(student_id: str, payload: CommentCreate,
                            user=Depends(require_permission(Action.ADD_REMARK)),
                            db: Database = Depends(get_db)):
    student = get_or_404(db, STUDENT, student_id, "Student")
    field = REMARK_LOGS.get(payload.type)
    if field is None:
        raise HTTPException(status_code=400, detail="Invalid comment type")
    if not student.get(field):
        return []
    # Index 0 is the most recently added entry, not necessarily the latest date.
    updated = db[STUDENT].find_one_and_update(
        {"_id": student["_id"]},
        {"$set": {f"{field}.0.teacher_remarks": payload.comment, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(updated.get(field) or [])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
