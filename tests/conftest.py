import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from security import create_access_token, hash_password


@pytest.fixture
def db():
    return mongomock.MongoClient()["school_records_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role="parent", email=None, password=None, first_name="Test", last_name="User"):
        doc = {
            "first_name": first_name,
            "last_name": last_name,
            "email": email or f"{role}-{ObjectId()}@example.com",
            "password_hash": hash_password(password) if password else "unused",
            "role": role,
        }
        return create_document(db, "user", doc)
    return _make


@pytest.fixture
def make_student(db):
    def _make(parent_id, roll_number=None, **logs):
        doc = {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "roll_number": roll_number or f"S-{ObjectId()}",
            "grade": "5",
            "section": "B",
            "parent_id": parent_id,
            "academic_results": logs.get("academic_results", []),
            "pe_performance": logs.get("pe_performance", []),
            "reading_time": logs.get("reading_time", []),
        }
        return create_document(db, "student", doc)
    return _make


def auth_headers(user_id, role):
    return {"x-auth-token": create_access_token(user_id, role)}


@pytest.fixture
def school(make_user, make_student):
    """Two families and one teacher/admin, with one child per parent."""
    parent = make_user("parent", first_name="Pat")
    other_parent = make_user("parent", first_name="Olive")
    teacher = make_user("teacher", first_name="Tom")
    admin = make_user("admin", first_name="Ann")
    student = make_student(parent)
    other_student = make_student(other_parent)
    return {
        "parent": parent,
        "other_parent": other_parent,
        "teacher": teacher,
        "admin": admin,
        "student": student,
        "other_student": other_student,
        "parent_headers": auth_headers(parent, "parent"),
        "other_parent_headers": auth_headers(other_parent, "parent"),
        "teacher_headers": auth_headers(teacher, "teacher"),
        "admin_headers": auth_headers(admin, "admin"),
    }


@pytest.fixture
def headers():
    return auth_headers
