from datetime import datetime


def test_parent_lists_only_own_students(client, school):
    resp = client.get("/api/students", headers=school["parent_headers"])
    assert resp.status_code == 200
    students = resp.json()
    assert [s["id"] for s in students] == [school["student"]]
    assert all(s["parent_id"] == school["parent"] for s in students)
    assert students[0]["parent"]["first_name"] == "Pat"


def test_staff_list_all_students(client, school):
    for key in ("teacher_headers", "admin_headers"):
        ids = {s["id"] for s in client.get("/api/students", headers=school[key]).json()}
        assert ids == {school["student"], school["other_student"]}


def test_get_student_ownership(client, school):
    own = client.get(f"/api/students/{school['student']}", headers=school["parent_headers"])
    assert own.status_code == 200
    other = client.get(f"/api/students/{school['other_student']}", headers=school["parent_headers"])
    assert other.status_code == 403


def test_get_student_not_found_and_bad_id(client, school):
    assert client.get("/api/students/" + "0" * 24, headers=school["teacher_headers"]).status_code == 404
    assert client.get("/api/students/not-an-id", headers=school["teacher_headers"]).status_code == 400


def test_create_student(client, school):
    payload = {
        "first_name": "Grace", "last_name": "Hopper", "roll_number": "R-100",
        "grade": "3", "section": "A", "parent_id": school["parent"],
    }
    resp = client.post("/api/students", json=payload, headers=school["teacher_headers"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["roll_number"] == "R-100"
    assert body["academic_results"] == []

    dup = client.post("/api/students", json=payload, headers=school["admin_headers"])
    assert dup.status_code == 409


def test_create_student_denied_to_parent_and_checks_parent(client, school):
    payload = {
        "first_name": "G", "last_name": "H", "roll_number": "R-1",
        "grade": "3", "section": "A", "parent_id": school["parent"],
    }
    assert client.post("/api/students", json=payload, headers=school["parent_headers"]).status_code == 403

    payload["parent_id"] = school["teacher"]
    assert client.post("/api/students", json=payload, headers=school["teacher_headers"]).status_code == 400

    payload["parent_id"] = "0" * 24
    assert client.post("/api/students", json=payload, headers=school["teacher_headers"]).status_code == 404


def test_logs_are_prepended(client, school):
    url = f"/api/students/{school['student']}/results"
    client.post(url, json={"subject": "math", "marks": 60, "total_marks": 100, "exam_type": "Unit"},
                headers=school["teacher_headers"])
    resp = client.post(url, json={"subject": "english", "marks": 90, "total_marks": 100},
                       headers=school["teacher_headers"])
    assert resp.status_code == 200
    assert [r["subject"] for r in resp.json()] == ["english", "math"]


def test_pe_and_reading_logs(client, school):
    sid = school["student"]
    pe = client.post(f"/api/students/{sid}/pe-performance",
                     json={"activity": "running", "performance": "good", "teacher_remarks": "steady"},
                     headers=school["teacher_headers"])
    assert pe.status_code == 200
    assert pe.json()[0]["activity"] == "running"

    reading = client.post(f"/api/students/{sid}/reading-time",
                          json={"minutes": 25, "book_title": "Holes"},
                          headers=school["admin_headers"])
    assert reading.status_code == 200

    log = client.get(f"/api/students/{sid}/reading-time", headers=school["parent_headers"])
    assert log.status_code == 200
    assert log.json()[0]["book_title"] == "Holes"
    assert datetime.fromisoformat(log.json()[0]["date"])


def test_marks_above_total_accepted_but_non_numeric_rejected(client, school):
    url = f"/api/students/{school['student']}/results"
    ok = client.post(url, json={"subject": "math", "marks": 150, "total_marks": 100},
                     headers=school["teacher_headers"])
    assert ok.status_code == 200
    bad = client.post(url, json={"subject": "math", "marks": "lots", "total_marks": 100},
                      headers=school["teacher_headers"])
    assert bad.status_code == 422


def test_parent_cannot_record_performance_regardless_of_payload(client, school):
    sid = school["student"]
    for path, payload in (
        ("results", {"subject": "math", "marks": 80, "total_marks": 100}),
        ("results", {"marks": "not-a-number"}),
        ("pe-performance", {"activity": "running", "performance": "good"}),
        ("reading-time", {}),
    ):
        resp = client.post(f"/api/students/{sid}/{path}", json=payload, headers=school["parent_headers"])
        assert resp.status_code == 403, path


def test_add_log_to_missing_student(client, school):
    resp = client.post("/api/students/" + "0" * 24 + "/results",
                       json={"subject": "math", "marks": 1, "total_marks": 2},
                       headers=school["teacher_headers"])
    assert resp.status_code == 404
