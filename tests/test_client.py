from datetime import datetime, timedelta, timezone

import pytest
import requests
from pydantic import ValidationError

from client import ApiError, Credential, CredentialExpired, SchoolRecordsClient
from security import create_access_token
from views import attendance_counts, load_dashboard, load_reading_tracker, reading_tracker


@pytest.fixture
def api(client):
    return SchoolRecordsClient("http://testserver", session=client)


def credential_for(user_id, role, **kwargs):
    return Credential.from_token(create_access_token(user_id, role, **kwargs))


def test_credential_claims(school):
    cred = credential_for(school["parent"], "parent")
    assert cred.user_id == school["parent"]
    assert cred.role == "parent"
    assert not cred.is_expired()
    assert cred.is_expired(now=cred.expires_at + timedelta(seconds=1))


def test_expired_credential_is_not_sent(school):
    class ExplodingSession:
        def request(self, *args, **kwargs):
            raise AssertionError("request should not be sent")

    expired = credential_for(school["teacher"], "teacher", expires_delta=timedelta(minutes=-5))
    api = SchoolRecordsClient("http://testserver", session=ExplodingSession())
    with pytest.raises(CredentialExpired):
        api.list_students(expired)


def test_malformed_token():
    with pytest.raises(ApiError) as exc:
        Credential.from_token("not-a-jwt")
    assert exc.value.status_code == 401


def test_register_and_login_round(api):
    cred = api.register("Pat", "Parent", "pat@example.com", "secret123")
    assert cred.role == "parent"
    again = api.login("pat@example.com", "secret123")
    assert api.me(again)["email"] == "pat@example.com"


def test_credentials_are_per_call(api, school):
    teacher = credential_for(school["teacher"], "teacher")
    parent = credential_for(school["parent"], "parent")
    assert len(api.list_students(teacher)) == 2
    assert len(api.list_students(parent)) == 1
    assert len(api.list_students(teacher)) == 2


def test_errors_carry_status(api, school):
    parent = credential_for(school["parent"], "parent")
    with pytest.raises(ApiError) as exc:
        api.mark_attendance(parent, school["student"], "present")
    assert exc.value.status_code == 403
    assert exc.value.detail == "Not authorized"


def test_teacher_workflow(api, school):
    teacher = credential_for(school["teacher"], "teacher")
    parent = credential_for(school["parent"], "parent")
    sid = school["student"]

    api.add_result(teacher, sid, "math", 80, 100, exam_type="Midterm")
    api.add_result(teacher, sid, "math", 70, 100)
    api.add_pe_performance(teacher, sid, "running", "good")
    api.add_reading_time(teacher, sid, 30, "Holes")
    assert api.add_comment(teacher, sid, "reading", "Keep going")[0]["teacher_remarks"] == "Keep going"

    analytics = api.get_analytics(parent, sid)
    assert analytics["academic"]["math"]["average_percentage"] == 75
    assert analytics["reading"]["average_minutes_per_day"] == 1
    assert api.get_performance(parent, sid)["pe_performance"][0]["activity"] == "running"

    record = api.mark_attendance(teacher, sid, "late", reason="traffic", late_minutes=5)
    with pytest.raises(ApiError) as exc:
        api.mark_attendance(teacher, sid, "present")
    assert exc.value.status_code == 409
    assert api.update_attendance(teacher, record["id"], status="present")["status"] == "present"
    assert api.acknowledge_attendance(parent, record["id"], "ok")["parent_acknowledged"] is True
    assert len(api.list_attendance(parent, student_id=sid)) == 1

    complaint = api.create_complaint(parent, sid, "facility", "Broken swing", "Playground swing is broken", "high")
    api.respond_to_complaint(teacher, complaint["id"], "Reported to maintenance")
    resolved = api.update_complaint_status(teacher, complaint["id"], "resolved", "Fixed")
    assert resolved["resolution"]["description"] == "Fixed"
    assert len(api.list_complaints(parent)) == 1


def test_dashboard_for_parent(api, school):
    teacher = credential_for(school["teacher"], "teacher")
    parent = credential_for(school["parent"], "parent")
    sid = school["student"]
    api.mark_attendance(teacher, sid, "absent")
    api.add_reading_time(teacher, sid, 45, "Matilda")
    api.create_complaint(parent, sid, "other", "Lunch", "Menu question")

    dash = load_dashboard(api, parent)
    assert [s["id"] for s in dash["students"]] == [sid]
    assert dash["attendance_counts"]["absent"] == 1
    assert dash["reading_average"] == 2
    assert len(dash["recent_complaints"]) == 1


def test_dashboard_keeps_stale_state_on_failure(school):
    class FailingSession:
        def request(self, method, url, **kwargs):
            raise ApiError(500, "Server Error")

    api = SchoolRecordsClient("http://testserver", session=FailingSession())
    previous = {"students": [{"id": "x"}]}
    cred = credential_for(school["parent"], "parent")
    assert load_dashboard(api, cred, previous=previous) is previous
    assert load_reading_tracker(api, cred, school["student"])["total_minutes"] == 0


def test_reading_tracker_view():
    entries = [{"date": f"2026-10-{day:02d}", "minutes": day} for day in range(10, 0, -1)]
    view = reading_tracker(entries)
    assert view["total_minutes"] == 55
    assert view["average_minutes"] == 6
    assert view["chart"]["minutes"] == [4, 5, 6, 7, 8, 9, 10]
    assert reading_tracker([])["average_minutes"] == 0


def test_attendance_counts_ignores_unknown_status():
    counts = attendance_counts([{"status": "present"}, {"status": "late"}, {"status": "??"}])
    assert counts == {"present": 1, "absent": 0, "late": 1, "excused": 0}


class RefusingSession:
    def request(self, method, url, **kwargs):
        raise requests.ConnectionError("connection refused")


class HtmlSession:
    class Response:
        status_code = 200
        text = "<html>maintenance</html>"

        def json(self):
            raise ValueError("Expecting value")

    def request(self, method, url, **kwargs):
        return self.Response()


def test_transport_failure_becomes_api_error(school):
    api = SchoolRecordsClient("http://testserver", session=RefusingSession())
    with pytest.raises(ApiError) as exc:
        api.list_students(credential_for(school["teacher"], "teacher"))
    assert exc.value.status_code == 503


def test_views_keep_stale_state_when_server_unreachable(school):
    api = SchoolRecordsClient("http://testserver", session=RefusingSession())
    cred = credential_for(school["parent"], "parent")
    previous = {"students": [{"id": "x"}]}
    assert load_dashboard(api, cred, previous=previous) is previous
    tracker = {"total_minutes": 99}
    assert load_reading_tracker(api, cred, school["student"], previous=tracker) is tracker


def test_non_json_success_body_becomes_api_error(school):
    api = SchoolRecordsClient("http://testserver", session=HtmlSession())
    cred = credential_for(school["parent"], "parent")
    with pytest.raises(ApiError):
        api.list_students(cred)
    assert load_dashboard(api, cred)["students"] == []


def test_credential_is_immutable(school):
    cred = credential_for(school["parent"], "parent")
    with pytest.raises(ValidationError):
        cred.role = "admin"


def test_admin_creates_teacher_account(api, school):
    admin = credential_for(school["admin"], "admin")
    teacher = api.register("Tess", "Teacher", "tess@example.com", "secret123", role="teacher", credential=admin)
    assert teacher.role == "teacher"
    with pytest.raises(ApiError) as exc:
        api.register("Eve", "Evil", "eve@example.com", "secret123", role="admin")
    assert exc.value.status_code == 401
