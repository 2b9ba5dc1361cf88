"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 상태를 유지.
  - login   : 로그인 상태 (Anonymous / Examinee / Admin)
  - exam    : 진행 중인 ExamSessionMachine (없으면 None)
  - notices : 화면에 한 번 띄울 알림 (로컬 저장소 손상, 원격 저장 실패 등). 시험 세션보다 오래 유지
TTL(기본 1시간) 경과 시 자동 만료.
"""

import threading
import time
import uuid
from typing import Any

from api.config import SESSION_TTL
from quiz_exam_cbt.models.login_state import Anonymous

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}


def _new_state() -> dict[str, Any]:
    return {
        "login": Anonymous(),
        "login_restored": False,
        "exam": None,
        "notices": [],
    }


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            del _sessions[sid]
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def add_notice(sid: str, notice: dict) -> None:
    """알림 추가. 백그라운드 저장 스레드에서도 호출되므로 잠금 안에서 갱신."""
    with _lock:
        if sid in _sessions:
            _sessions[sid]["notices"] = _sessions[sid]["notices"] + [notice]


def take_notices(sid: str) -> list:
    """쌓인 알림을 꺼내고 비움."""
    with _lock:
        if sid not in _sessions:
            return []
        drained = _sessions[sid]["notices"]
        _sessions[sid]["notices"] = []
        return drained


def reset(sid: str) -> None:
    """세션 초기화 (로그아웃). 진행 중인 시험도 함께 폐기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid] = _new_state()
            _sessions[sid]["login_restored"] = True
            _timestamps[sid] = time.time()


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    removed = 0
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            del _sessions[sid]
            del _timestamps[sid]
            removed += 1
    return removed
