import io
import os

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from api.app import create_app
import api.session as session
from api.config import CLIENT_COOKIE, SESSION_COOKIE
from conftest import DeferredExecutor, ImmediateExecutor, make_bank
from quiz_exam_cbt.services.storage import LocalStore, QuestionBankStore

LOGIN = {
    "username": "Trần Văn B",
    "doituong": "Chiensimoi",
    "donvi": "Tiểu đoàn 2",
    "capbac": "Binh nhất",
    "chucvu": "Tiểu đội trưởng",
}


@pytest.fixture
def app(data_dir):
    QuestionBankStore(os.path.join(data_dir, "questions.json")).put_bank({
        "Chiensimoi": make_bank(3),
        "Siquan-QNCN": make_bank(30, prefix="S"),
    })
    return create_app(data_dir, recorder_executor=ImmediateExecutor())


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def admin_client(app):
    c = TestClient(app)
    assert c.post("/api/admin/auth", json={"username": "admin", "password": "admin123"}).status_code == 200
    return c


def _login(client, **overrides):
    r = client.post("/api/login", json={**LOGIN, **overrides})
    assert r.status_code == 200
    return r


def _take_real_exam(client):
    _login(client)
    client.post("/api/exam/start", json={"mode": "real"})
    client.post("/api/exam/answer", json={"question_index": 0, "choice_index": 0})
    return client.post("/api/exam/submit", json={"confirmed": True})


def test_public_settings(client):
    assert client.get("/api/settings").json() == {"defaultQuestionsCount": 25, "examTime": 1200}


def test_question_bank_read(client):
    bank = client.get("/api/questions").json()
    assert set(bank) == {"Chiensimoi", "Siquan-QNCN"}
    assert bank["Chiensimoi"][0] == {"cauHoi": "Q0", "luaChon": ["Q0-A", "Q0-B", "Q0-C", "Q0-D"], "dapAn": 0}


def test_login_requires_all_fields(client):
    r = client.post("/api/login", json={**LOGIN, "donvi": "  "})
    assert r.status_code == 422
    assert client.get("/api/me").json()["kind"] == "anonymous"


def test_anonymous_cannot_start(client):
    r = client.post("/api/exam/start", json={"mode": "practice", "category": "Chiensimoi"})
    assert r.status_code == 401


def test_real_exam_flow(client):
    _login(client)
    r = client.post("/api/exam/start", json={"mode": "real"})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "in_progress"
    assert body["total"] == 3
    assert body["answers"] == [-1, -1, -1]
    assert all("dapAn" not in q for q in body["questions"])
    assert [n["kind"] for n in body["notices"]] == ["InsufficientQuestions"]

    r = client.post("/api/exam/answer", json={"question_index": 1, "choice_index": 2})
    assert r.json()["answers"] == [-1, 2, -1]
    r = client.post("/api/exam/answer", json={"question_index": 7, "choice_index": 0})
    assert r.json()["accepted"] is False

    assert client.post("/api/exam/tick").json()["state"] == "in_progress"

    r = client.post("/api/exam/submit", json={})
    assert r.status_code == 409

    r = client.post("/api/exam/submit", json={"confirmed": True})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "submitted"
    assert all("dapAn" in q for q in body["questions"])
    assert body["score_text"] == f"{body['score']:.2f}"

    again = client.post("/api/exam/submit", json={"confirmed": True}).json()
    assert again["score_text"] == body["score_text"]

    history = client.get("/api/history").json()["history"]
    assert len(history) == 1
    assert history[0]["username"] == LOGIN["username"]
    assert history[0]["doituong"] == "Chiensimoi"


def test_real_result_reaches_result_store(client, admin_client):
    _take_real_exam(client)
    results = admin_client.get("/api/test-results").json()
    assert len(results) == 1
    assert results[0]["id"]
    assert results[0]["total"] == 3


def test_practice_result_is_not_persisted(client, admin_client):
    _login(client)
    client.post("/api/exam/start", json={"mode": "practice", "category": "Siquan-QNCN"})
    r = client.post("/api/exam/submit", json={})
    assert r.status_code == 200
    assert r.json()["total"] == 25
    assert client.get("/api/history").json()["history"] == []
    assert admin_client.get("/api/test-results").json() == []


def test_empty_category(client):
    _login(client, doituong="Lopdangvienmoi")
    r = client.post("/api/exam/start", json={"mode": "real"})
    assert r.status_code == 400
    assert "Chưa có câu hỏi" in r.json()["detail"]
    assert client.get("/api/exam/state").status_code == 404


def test_back_discards_session(client):
    _login(client)
    client.post("/api/exam/start", json={"mode": "real"})
    assert client.post("/api/exam/back").json() == {"ok": True}
    assert client.get("/api/exam/state").status_code == 404
    assert client.get("/api/me").json()["kind"] == "examinee"


def test_logout(client):
    _login(client)
    assert client.get("/api/me").json()["username"] == LOGIN["username"]
    client.post("/api/logout")
    assert client.get("/api/me").json()["kind"] == "anonymous"


def _local_of(app, client) -> LocalStore:
    return LocalStore(os.path.join(app.state.local_dir, f"{client.cookies.get(CLIENT_COOKIE)}.json"))


def test_login_and_history_survive_server_restart(app, client, monkeypatch):
    _take_real_exam(client)
    old_sid = client.cookies.get(SESSION_COOKIE)

    # 서버 재시작: 인메모리 세션이 모두 사라짐
    monkeypatch.setattr(session, "_sessions", {})
    monkeypatch.setattr(session, "_timestamps", {})

    me = client.get("/api/me").json()
    assert client.cookies.get(SESSION_COOKIE) != old_sid
    assert me["kind"] == "examinee"
    assert me["capbac"] == LOGIN["capbac"]
    assert len(client.get("/api/history").json()["history"]) == 1
    assert os.listdir(app.state.local_dir) == [f"{client.cookies.get(CLIENT_COOKIE)}.json"]


def test_login_survives_expired_session_cookie(client):
    _login(client)
    client.cookies.delete(SESSION_COOKIE)

    assert client.get("/api/me").json()["kind"] == "examinee"


def test_admin_marker_survives_server_restart(admin_client, monkeypatch):
    monkeypatch.setattr(session, "_sessions", {})
    monkeypatch.setattr(session, "_timestamps", {})

    assert admin_client.get("/api/me").json()["kind"] == "admin"
    assert admin_client.get("/api/test-results").status_code == 200


def test_foreign_client_cookie_is_replaced(app):
    client = TestClient(app)
    r = client.post("/api/login", json=LOGIN, headers={"Cookie": f"{CLIENT_COOKIE}=../../settings"})
    assert r.status_code == 200

    client_id = client.cookies.get(CLIENT_COOKIE)
    assert client_id != "../../settings"
    assert os.listdir(app.state.local_dir) == [f"{client_id}.json"]


def test_clients_do_not_share_local_store(app, client):
    _take_real_exam(client)
    other = TestClient(app)
    assert other.get("/api/me").json()["kind"] == "anonymous"
    assert other.get("/api/history").json()["history"] == []


def test_remote_save_failure_is_reported_after_leaving_result_screen(data_dir):
    QuestionBankStore(os.path.join(data_dir, "questions.json")).put_bank({"Chiensimoi": make_bank(3)})
    executor = DeferredExecutor()
    client = TestClient(create_app(data_dir, recorder_executor=executor))

    _take_real_exam(client)
    client.post("/api/exam/back")
    with open(os.path.join(data_dir, "test-results.json"), "w", encoding="utf-8") as f:
        f.write("not json")
    executor.run_pending()

    r = client.post("/api/exam/start", json={"mode": "real"})
    kinds = [n["kind"] for n in r.json()["notices"]]
    assert kinds.count("PersistenceFailure") == 1
    assert client.get("/api/me").json()["notices"] == []
    assert len(client.get("/api/history").json()["history"]) == 1


def test_remote_save_failure_is_reported_on_next_request(data_dir):
    QuestionBankStore(os.path.join(data_dir, "questions.json")).put_bank({"Chiensimoi": make_bank(3)})
    executor = DeferredExecutor()
    client = TestClient(create_app(data_dir, recorder_executor=executor))

    _take_real_exam(client)
    os.makedirs(os.path.join(data_dir, "test-results.json.tmp"))
    executor.run_pending()

    kinds = [n["kind"] for n in client.get("/api/me").json()["notices"]]
    assert kinds == ["PersistenceFailure"]


def test_malformed_local_history_is_reported(app, client):
    _login(client)
    _local_of(app, client).set_raw("testHistory", "[{oops")

    body = client.get("/api/history").json()
    assert body["history"] == []
    assert [n["kind"] for n in body["notices"]] == ["MalformedStoredState"]
    assert client.get("/api/history").json()["notices"] == []


def test_history_pdf(client):
    _take_real_exam(client)
    r = client.get("/api/history/0/pdf")
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")
    assert client.get("/api/history/5/pdf").status_code == 404


def test_clear_history(client):
    _take_real_exam(client)
    client.delete("/api/history")
    assert client.get("/api/history").json()["history"] == []


def test_review_category(client):
    assert client.get("/api/review/Chiensimoi").status_code == 401
    _login(client)
    body = client.get("/api/review/Chiensimoi").json()
    assert len(body["questions"]) == 3
    assert client.get("/api/review/Chiensinamthuhai").status_code == 400


# ── 관리자 ───────────────────────────────────────────────────────────────────

def test_admin_login_failures(client):
    assert client.post("/api/admin/auth", json={"username": "admin", "password": ""}).status_code == 400
    assert client.post("/api/admin/auth", json={"username": "admin", "password": "x"}).status_code == 401


def test_admin_username_check(client):
    assert client.get("/api/admin/auth", params={"username": "admin"}).json() == {"valid": True, "username": "admin"}
    assert client.get("/api/admin/auth", params={"username": "x"}).json()["valid"] is False
    assert client.get("/api/admin/auth").status_code == 400


def test_admin_endpoints_require_admin(client):
    assert client.get("/api/test-results").status_code == 401
    assert client.post("/api/settings", json={"defaultQuestionsCount": 5, "examTime": 60}).status_code == 401
    assert client.post("/api/questions/Chiensimoi", json={"cauHoi": "x", "luaChon": ["a", "b", "c", "d"]}).status_code == 401


def test_admin_updates_settings(admin_client, client):
    r = admin_client.post("/api/settings", json={"defaultQuestionsCount": 2, "examTime": 90})
    assert r.json() == {"success": True}

    _login(client, doituong="Siquan-QNCN")
    body = client.post("/api/exam/start", json={"mode": "real"}).json()
    assert body["total"] == 2
    assert body["duration_seconds"] == 90
    assert body["notices"] == []


def test_admin_question_crud(admin_client):
    new_q = {"cauHoi": "Câu mới", "luaChon": ["a", "b", "c", "d"], "dapAn": 3}
    r = admin_client.post("/api/questions/Lopdangvienmoi", json=new_q)
    assert r.json() == {"success": True, "index": 0}

    blank = {"cauHoi": "  ", "luaChon": ["a", "b", "c", "d"], "dapAn": 0}
    assert admin_client.post("/api/questions/Lopdangvienmoi", json=blank).status_code == 400

    edited = {**new_q, "cauHoi": "Đã sửa", "dapAn": 1}
    assert admin_client.put("/api/questions/Lopdangvienmoi/0", json=edited).status_code == 200
    assert admin_client.put("/api/questions/Lopdangvienmoi/9", json=edited).status_code == 404
    assert admin_client.get("/api/questions").json()["Lopdangvienmoi"] == [
        {"cauHoi": "Đã sửa", "luaChon": ["a", "b", "c", "d"], "dapAn": 1}
    ]

    assert admin_client.delete("/api/questions/Lopdangvienmoi/0").status_code == 200
    assert admin_client.delete("/api/questions/Lopdangvienmoi/0").status_code == 404


def test_admin_replaces_whole_bank(admin_client):
    bank = {"Chiensimoi": [{"cauHoi": "Một", "luaChon": ["a", "b", "c", "d"], "dapAn": 0}]}
    assert admin_client.post("/api/questions", json=bank).status_code == 200
    assert admin_client.get("/api/questions").json() == bank

    broken = {"Chiensimoi": [{"cauHoi": "x", "luaChon": ["a", "b"], "dapAn": 4}]}
    assert admin_client.post("/api/questions", json=broken).status_code == 400


def test_admin_results_management(client, admin_client):
    _take_real_exam(client)
    _take_real_exam(client)
    results = admin_client.get("/api/test-results").json()
    assert len(results) == 2

    r = admin_client.get("/api/test-results/export")
    assert r.status_code == 200
    rows = list(load_workbook(io.BytesIO(r.content)).active.iter_rows(values_only=True))
    assert len(rows) == 3

    pdf = admin_client.get(f"/api/test-results/{results[0]['id']}/pdf")
    assert pdf.content.startswith(b"%PDF")

    assert admin_client.delete(f"/api/test-results/{results[0]['id']}").status_code == 200
    assert admin_client.delete(f"/api/test-results/{results[0]['id']}").status_code == 404
    assert admin_client.delete("/api/test-results").json() == {"success": True, "removed": 1}
    assert admin_client.get("/api/test-results").json() == []


def test_corrupt_result_file_is_reported(app, admin_client):
    with open(os.path.join(app.state.data_dir, "test-results.json"), "w", encoding="utf-8") as f:
        f.write("[{broken")

    for path in ("/api/test-results", "/api/test-results/export", "/api/test-results/1/pdf"):
        r = admin_client.get(path)
        assert r.status_code == 500
        assert "kết quả thi" in r.json()["detail"]
    assert admin_client.delete("/api/test-results/1").status_code == 500

    assert admin_client.delete("/api/test-results").json() == {"success": True, "removed": 0}
    assert admin_client.get("/api/test-results").json() == []


def test_audio_listing(client, tmp_path, monkeypatch):
    monkeypatch.setattr("api.routes.AUDIO_DIR", str(tmp_path / "missing"))
    assert client.get("/api/audio").json() == {"files": []}

    for name in ("b.MP3", "a.ogg", "notes.txt"):
        (tmp_path / name).write_bytes(b"")
    monkeypatch.setattr("api.routes.AUDIO_DIR", str(tmp_path))
    assert client.get("/api/audio").json() == {"files": ["/static/audio/a.ogg", "/static/audio/b.MP3"]}


def test_append_result_validation(client):
    payload = {
        "username": "", "doituong": "Chiensimoi", "timestamp": "19/10/2026 08:00:00",
        "correct": 1, "total": 2, "score": "5.00",
    }
    assert client.post("/api/test-results", json=payload).status_code == 400
    payload["username"] = "Lê C"
    r = client.post("/api/test-results", json=payload)
    assert r.status_code == 200
    assert r.json()["id"]


def test_admin_change_credentials(admin_client, client):
    r = admin_client.put("/api/admin/auth", json={
        "currentUsername": "admin", "currentPassword": "admin123",
        "newUsername": "quantri", "newPassword": "matkhau99",
    })
    assert r.json()["username"] == "quantri"
    assert admin_client.get("/api/me").json()["username"] == "quantri"

    assert client.post("/api/admin/auth", json={"username": "quantri", "password": "matkhau99"}).status_code == 200
    bad = admin_client.put("/api/admin/auth", json={"currentUsername": "quantri", "currentPassword": "x"})
    assert bad.status_code == 401


def test_admin_practice_needs_category(admin_client):
    r = admin_client.post("/api/exam/start", json={"mode": "real", "category": "Chiensimoi"})
    assert r.status_code == 403
    r = admin_client.post("/api/exam/start", json={"mode": "practice", "category": "Chiensimoi"})
    assert r.status_code == 200
    assert admin_client.post("/api/exam/start", json={"mode": "practice"}).status_code == 400


def test_categories(client):
    body = client.get("/api/categories").json()
    assert body["default"] == "Siquan-QNCN"
    counts = {c["key"]: c["question_count"] for c in body["categories"]}
    assert counts["Chiensimoi"] == 3
    assert counts["Siquan-QNCN"] == 30
    assert counts["Lopdangvienmoi"] == 0
