"""
api/routes.py — FastAPI 엔드포인트
"""

import asyncio
import logging
import os
from functools import partial
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

import config
from api.config import ADMIN_SESSION_TTL, AUDIO_DIR, AUDIO_EXTENSIONS
import api.session as session

# Core Logic Imports (Relative paths handled by package structure)
from quiz_exam_cbt.errors import (
    ConfirmationRequired, EmptyCategory, InvalidCredentials, MalformedStoredState,
)
from quiz_exam_cbt.models.login_state import Admin, Anonymous, Examinee, LoginState
from quiz_exam_cbt.models.question_model import Question, bank_from_wire, bank_to_wire
from quiz_exam_cbt.models.session_state import ExamIdentity, ExamMode, ExamResult, PublicSettings
from quiz_exam_cbt.services.auth_service import change_credentials, is_admin_username, verify_admin
from quiz_exam_cbt.services.exam_session import ExamSessionMachine
from quiz_exam_cbt.services.export_service import pdf_filename, result_to_pdf, results_to_excel
from quiz_exam_cbt.services.result_recorder import ResultRecorder
from quiz_exam_cbt.services.storage import LocalStore

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# ── Pydantic request bodies ──────────────────────────────────────────────────

class AdminLoginBody(BaseModel):
    username: str = ""
    password: str = ""

class CredentialsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_username: str = Field("", alias="currentUsername")
    current_password: str = Field("", alias="currentPassword")
    new_username: str = Field("", alias="newUsername")
    new_password: str = Field("", alias="newPassword")

class QuestionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field("", alias="cauHoi")
    choices: List[str] = Field(default_factory=lambda: ["", "", "", ""], alias="luaChon")
    correct_choice_index: int = Field(0, alias="dapAn")

class StartExamBody(BaseModel):
    mode: ExamMode = ExamMode.REAL
    category: Optional[str] = None

class AnswerBody(BaseModel):
    question_index: int
    choice_index: int

class SubmitBody(BaseModel):
    confirmed: bool = False


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _sid(request: Request) -> str:
    return request.state.session_id


def _local_store(request: Request) -> LocalStore:
    return LocalStore(os.path.join(request.app.state.local_dir, f"{request.state.client_id}.json"))


def _notify_session(sid: str, error: Exception) -> None:
    session.add_notice(sid, {"kind": type(error).__name__, "message": str(error)})


def _client_notify(request: Request, error: Exception) -> None:
    _notify_session(_sid(request), error)


def _drain_notices(request: Request) -> list:
    sid = _sid(request)
    notices = session.take_notices(sid)
    exam: Optional[ExamSessionMachine] = session.get(sid, "exam")
    if exam is not None:
        notices = notices + [n._asdict() for n in exam.drain_notices()]
    return notices


def _login_state(request: Request) -> LoginState:
    """세션 첫 접근 시 로컬 저장소의 로그인 정보 / 관리자 표식으로 로그인 상태를 복원."""
    sid = _sid(request)
    if not session.get(sid, "login_restored", False):
        session.put(sid, "login_restored", True)
        local = _local_store(request)
        try:
            marker = local.get_admin_marker()
            if marker and is_admin_username(request.app.state.settings_store, marker.username):
                session.put(sid, "login", marker)
            else:
                identity = local.get_login()
                if identity is not None:
                    session.put(sid, "login", Examinee(identity=identity))
        except MalformedStoredState as e:
            _client_notify(request, e)

    login = session.get(sid, "login", Anonymous())
    if isinstance(login, Admin) and login.is_expired():
        _local_store(request).clear_admin_marker()
        login = Anonymous()
        session.put(sid, "login", login)
    return login


def _require_admin(request: Request) -> Admin:
    login = _login_state(request)
    if not isinstance(login, Admin):
        raise HTTPException(status_code=401, detail="Vui lòng đăng nhập quản trị.")
    return login


def _require_exam(request: Request) -> ExamSessionMachine:
    exam: Optional[ExamSessionMachine] = session.get(_sid(request), "exam")
    if exam is None:
        raise HTTPException(status_code=404, detail="Chưa bắt đầu bài thi.")
    return exam


def _login_to_dict(login: LoginState) -> dict:
    if isinstance(login, Examinee):
        return {"kind": login.kind, **login.identity.model_dump(by_alias=True)}
    if isinstance(login, Admin):
        return {"kind": login.kind, "username": login.username, "session_expiry": login.session_expiry}
    return {"kind": login.kind}


def _pdf_response(pdf_bytes: bytes, filename: str) -> Response:
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── 문제은행 ─────────────────────────────────────────────────────────────────

@router.get("/api/categories")
async def list_categories(request: Request):
    """로그인 화면의 대상 목록 + 대상별 문제 수."""
    try:
        bank = request.app.state.question_store.get_bank()
    except ValueError:
        bank = {}
    return {
        "default": config.DEFAULT_CATEGORY,
        "categories": [
            {"key": key, "label": label, "question_count": len(bank.get(key, []))}
            for key, label in config.CATEGORIES.items()
        ],
    }


@router.get("/api/questions")
async def get_questions(request: Request):
    try:
        bank = request.app.state.question_store.get_bank()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return bank_to_wire(bank)


@router.post("/api/questions")
async def put_questions(request: Request):
    _require_admin(request)
    try:
        bank = bank_from_wire(await request.json())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid questions data: {e}")
    request.app.state.question_store.put_bank(bank)
    return {"success": True}


@router.post("/api/questions/{category}")
async def add_question(category: str, body: QuestionBody, request: Request):
    _require_admin(request)
    try:
        question = Question.from_form(body.text, body.choices, body.correct_choice_index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=_first_error(e))
    index = request.app.state.question_store.add_question(category, question)
    return {"success": True, "index": index}


@router.put("/api/questions/{category}/{index}")
async def edit_question(category: str, index: int, body: QuestionBody, request: Request):
    _require_admin(request)
    try:
        question = Question.from_form(body.text, body.choices, body.correct_choice_index)
        request.app.state.question_store.replace_question(category, index, question)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=_first_error(e))
    return {"success": True}


@router.delete("/api/questions/{category}/{index}")
async def delete_question(category: str, index: int, request: Request):
    _require_admin(request)
    try:
        request.app.state.question_store.delete_question(category, index)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


def _first_error(e: ValueError) -> str:
    if isinstance(e, ValidationError):
        return e.errors()[0]["msg"]
    return str(e)


# ── 설정 ─────────────────────────────────────────────────────────────────────

@router.get("/api/settings")
async def get_settings(request: Request):
    return request.app.state.settings_store.get_public().model_dump(by_alias=True)


@router.post("/api/settings")
async def put_settings(body: PublicSettings, request: Request):
    _require_admin(request)
    request.app.state.settings_store.put_public(body)
    return {"success": True}


# ── 관리자 인증 ──────────────────────────────────────────────────────────────

@router.post("/api/admin/auth")
async def admin_login(body: AdminLoginBody, request: Request):
    try:
        admin = verify_admin(
            request.app.state.settings_store, body.username, body.password, ADMIN_SESSION_TTL,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))

    sid = _sid(request)
    session.put(sid, "login", admin)
    session.put(sid, "login_restored", True)
    _local_store(request).set_admin_marker(admin)
    return {"success": True, "message": "Đăng nhập thành công!", "username": admin.username}


@router.get("/api/admin/auth")
async def admin_check(request: Request, username: str = ""):
    if not username:
        raise HTTPException(status_code=400, detail="Username is required")
    valid = is_admin_username(request.app.state.settings_store, username)
    return {"valid": valid, "username": username if valid else None}


@router.put("/api/admin/auth")
async def admin_change_credentials(body: CredentialsBody, request: Request):
    try:
        username = change_credentials(
            request.app.state.settings_store,
            body.current_username, body.current_password,
            body.new_username, body.new_password,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))

    login = _login_state(request)
    if isinstance(login, Admin) and login.username != username:
        renamed = login.model_copy(update={"username": username})
        session.put(_sid(request), "login", renamed)
        _local_store(request).set_admin_marker(renamed)
    return {"success": True, "message": "Admin credentials updated successfully", "username": username}


# ── 결과 (서버 저장소) ───────────────────────────────────────────────────────

def _stored_results(request: Request) -> List[ExamResult]:
    try:
        return request.app.state.result_store.list_results()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/api/test-results")
async def list_results(request: Request):
    _require_admin(request)
    return [r.to_wire() for r in _stored_results(request)]


@router.post("/api/test-results")
async def append_result(body: ExamResult, request: Request):
    try:
        result_id = request.app.state.result_store.append_result(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "id": result_id}


@router.delete("/api/test-results")
async def delete_all_results(request: Request):
    _require_admin(request)
    removed = request.app.state.result_store.delete_all()
    return {"success": True, "removed": removed}


@router.get("/api/test-results/export")
async def export_results(request: Request):
    _require_admin(request)
    results = _stored_results(request)
    content = await asyncio.to_thread(results_to_excel, results)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="KetQuaThi.xlsx"'},
    )


@router.get("/api/test-results/{result_id}/pdf")
async def export_result_pdf(result_id: str, request: Request):
    _require_admin(request)
    match = next((r for r in _stored_results(request) if r.id == result_id), None)
    if match is None:
        raise HTTPException(status_code=404, detail="Không tìm thấy kết quả.")
    return _pdf_response(await asyncio.to_thread(result_to_pdf, match), pdf_filename(match))


@router.delete("/api/test-results/{result_id}")
async def delete_result(result_id: str, request: Request):
    _require_admin(request)
    try:
        deleted = request.app.state.result_store.delete_result(result_id)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Không tìm thấy kết quả.")
    return {"success": True}


# ── 응시자 로그인 ────────────────────────────────────────────────────────────

@router.post("/api/login")
async def login(body: ExamIdentity, request: Request):
    sid = _sid(request)
    exam: Optional[ExamSessionMachine] = session.get(sid, "exam")
    if exam is not None:
        exam.reset()
    session.put(sid, "exam", None)
    session.put(sid, "login", Examinee(identity=body))
    session.put(sid, "login_restored", True)
    _local_store(request).set_login(body)
    return {"success": True, **_login_to_dict(Examinee(identity=body))}


@router.post("/api/logout")
async def logout(request: Request):
    local = _local_store(request)
    local.clear_login()
    local.clear_admin_marker()
    session.reset(_sid(request))
    return {"success": True}


@router.get("/api/me")
async def me(request: Request):
    login = _login_state(request)
    return {**_login_to_dict(login), "notices": _drain_notices(request)}


# ── 시험 세션 ────────────────────────────────────────────────────────────────

def _exam_response(request: Request, exam: ExamSessionMachine) -> dict:
    return {**exam.snapshot(), "notices": _drain_notices(request)}


@router.post("/api/exam/start")
async def start_exam(body: StartExamBody, request: Request):
    login = _login_state(request)
    if isinstance(login, Anonymous):
        raise HTTPException(status_code=401, detail="Vui lòng nhập đầy đủ thông tin trước khi vào thi!")
    identity = login.identity if isinstance(login, Examinee) else None
    if body.mode == ExamMode.REAL and identity is None:
        raise HTTPException(status_code=403, detail="Chỉ thí sinh mới được thi thật.")

    category = body.category or (identity.category if identity else "")
    state = request.app.state
    sid = _sid(request)
    exam: Optional[ExamSessionMachine] = session.get(sid, "exam")
    if exam is None or exam.identity != identity:
        recorder = ResultRecorder(_local_store(request), state.result_store, executor=state.recorder_executor)
        exam = ExamSessionMachine(
            state.question_store, state.settings_store, recorder, identity,
            on_persist_failure=partial(_notify_session, sid),
        )

    try:
        exam.start(category, body.mode)
    except EmptyCategory as e:
        raise HTTPException(status_code=400, detail=str(e))
    session.put(sid, "exam", exam)
    return _exam_response(request, exam)


@router.get("/api/exam/state")
async def exam_state(request: Request):
    return _exam_response(request, _require_exam(request))


@router.post("/api/exam/answer")
async def select_answer(body: AnswerBody, request: Request):
    exam = _require_exam(request)
    accepted = exam.select_answer(body.question_index, body.choice_index)
    return {"ok": True, "accepted": accepted, "answers": list(exam.session.answers) if exam.session else []}


@router.post("/api/exam/tick")
async def tick(request: Request):
    exam = _require_exam(request)
    remaining = exam.tick()
    return {"remaining_seconds": remaining, "state": exam.status.value, "notices": _drain_notices(request)}


@router.post("/api/exam/submit")
async def submit_exam(body: SubmitBody, request: Request):
    exam = _require_exam(request)
    try:
        exam.submit(confirmed=body.confirmed)
    except ConfirmationRequired as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _exam_response(request, exam)


@router.post("/api/exam/back")
async def back_to_main(request: Request):
    exam: Optional[ExamSessionMachine] = session.get(_sid(request), "exam")
    if exam is not None:
        exam.reset()
    session.put(_sid(request), "exam", None)
    return {"ok": True}


# ── 로컬 응시 기록 / 복습 ────────────────────────────────────────────────────

def _history(request: Request) -> List[ExamResult]:
    try:
        return _local_store(request).get_history()
    except MalformedStoredState as e:
        _client_notify(request, e)
        return []


@router.get("/api/history")
async def get_history(request: Request):
    history = _history(request)
    return {"history": [r.to_wire() for r in history], "notices": _drain_notices(request)}


@router.delete("/api/history")
async def clear_history(request: Request):
    _local_store(request).clear_history()
    return {"ok": True}


@router.get("/api/history/{index}/pdf")
async def history_pdf(index: int, request: Request):
    history = _history(request)
    if not 0 <= index < len(history):
        raise HTTPException(status_code=404, detail="Không tìm thấy kết quả.")
    result = history[index]
    return _pdf_response(await asyncio.to_thread(result_to_pdf, result), pdf_filename(result))


@router.get("/api/review/{category}")
async def review_category(category: str, request: Request):
    if isinstance(_login_state(request), Anonymous):
        raise HTTPException(status_code=401, detail="Vui lòng đăng nhập.")
    questions = request.app.state.question_store.get_category(category)
    if not questions:
        raise HTTPException(status_code=400, detail=str(EmptyCategory(category)))
    return {"category": category, "questions": [q.to_wire() for q in questions]}


# ── 배경음악 ─────────────────────────────────────────────────────────────────

@router.get("/api/audio")
async def list_audio():
    """static/audio 안의 오디오 파일 URL 목록. 폴더가 없으면 빈 목록."""
    if not os.path.isdir(AUDIO_DIR):
        return {"files": []}
    try:
        names = sorted(os.listdir(AUDIO_DIR))
    except OSError as e:
        logger.error(f"오디오 폴더 읽기 실패: {e}")
        raise HTTPException(status_code=500, detail="Failed to read audio files")
    return {"files": [f"/static/audio/{name}" for name in names if name.lower().endswith(AUDIO_EXTENSIONS)]}
