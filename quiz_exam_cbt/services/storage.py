"""
services/storage.py

JSON 파일 기반 저장소.
  - QuestionBankStore : questions.json  (대상 → 문제 리스트, 통째로 읽고 씀)
  - SettingsStore     : settings.json   (시험 설정 + 관리자 계정)
  - ResultStore       : test-results.json (제출 결과 목록, 추가/삭제)
  - LocalStore        : 클라이언트별 키-값 저장소 (로그인 정보, 응시 기록, 관리자 세션 표식)

동시 쓰기 안전성은 보장하지 않는다. 파일 단위 Lock은 같은 프로세스 내 결과 추가 경합만 막는다.
"""

import hashlib
import json
import logging
import os
import threading
import time
from typing import Any, List, Optional

from pydantic import ValidationError

import config
from quiz_exam_cbt.errors import MalformedStoredState
from quiz_exam_cbt.models.login_state import Admin
from quiz_exam_cbt.models.question_model import Question, QuestionBank, bank_from_wire, bank_to_wire
from quiz_exam_cbt.models.session_state import ExamIdentity, ExamResult, PublicSettings, Settings

logger = logging.getLogger(__name__)

RESULTS_UNREADABLE = "Không thể tải dữ liệu kết quả thi. Vui lòng liên hệ admin."


def hash_password(password: str) -> str:
    """관리자 비밀번호 해시 (기존 데이터와 호환되는 MD5 hex)."""
    return hashlib.md5(password.encode("utf-8")).hexdigest()


def default_settings() -> Settings:
    return Settings(
        questions_per_exam=config.DEFAULT_QUESTIONS_COUNT,
        exam_duration_seconds=config.DEFAULT_EXAM_TIME,
        admin_username=config.DEFAULT_ADMIN_USERNAME,
        admin_password=hash_password(config.DEFAULT_ADMIN_PASSWORD),
    )


class JsonFileStore:
    """JSON 파일 하나를 통째로 읽고 쓰는 기반 클래스."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self, default: Any) -> Any:
        if not os.path.exists(self.path):
            return default
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: Any) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)


# ── 문제은행 ─────────────────────────────────────────────────────────────────

class QuestionBankStore(JsonFileStore):

    def get_bank(self) -> QuestionBank:
        """파일이 없으면 빈 문제은행. 형식 오류는 ValueError로 전파."""
        try:
            data = self._read({})
        except json.JSONDecodeError as e:
            logger.error(f"문제 파일 읽기 실패: {self.path} ({e})")
            raise ValueError("Không thể tải dữ liệu câu hỏi. Vui lòng liên hệ admin.") from e
        return bank_from_wire(data)

    def put_bank(self, bank: QuestionBank) -> None:
        with self._lock:
            self._write(bank_to_wire(bank))
        logger.info(f"문제은행 저장: {sum(len(v) for v in bank.values())}문항 / {len(bank)}개 대상")

    def get_category(self, category: str) -> List[Question]:
        return self.get_bank().get(category, [])

    def add_question(self, category: str, question: Question) -> int:
        """대상 끝에 문제를 추가하고 새 인덱스를 반환. 대상이 없으면 새로 만든다."""
        bank = self.get_bank()
        bank.setdefault(category, []).append(question)
        self.put_bank(bank)
        return len(bank[category]) - 1

    def replace_question(self, category: str, index: int, question: Question) -> None:
        bank = self.get_bank()
        items = self._require(bank, category, index)
        items[index] = question
        self.put_bank(bank)

    def delete_question(self, category: str, index: int) -> Question:
        bank = self.get_bank()
        items = self._require(bank, category, index)
        removed = items.pop(index)
        self.put_bank(bank)
        return removed

    @staticmethod
    def _require(bank: QuestionBank, category: str, index: int) -> List[Question]:
        items = bank.get(category)
        if items is None or not 0 <= index < len(items):
            raise LookupError(f"Không tìm thấy câu hỏi {category}[{index}].")
        return items


# ── 설정 ─────────────────────────────────────────────────────────────────────

class SettingsStore(JsonFileStore):

    def _ensure_file(self) -> None:
        if not os.path.exists(self.path):
            self._write(default_settings().model_dump(by_alias=True))

    def get_settings(self) -> Settings:
        """파일을 읽을 수 없으면 기본 설정으로 대체한다."""
        try:
            self._ensure_file()
            return Settings.model_validate(self._read({}))
        except (OSError, ValueError) as e:
            logger.error(f"설정 파일 읽기 실패, 기본값 사용: {e}")
            return default_settings()

    def get_public(self) -> PublicSettings:
        return self.get_settings().public()

    def put_public(self, public: PublicSettings) -> Settings:
        """시험 설정만 갱신하고 관리자 계정은 유지한다."""
        with self._lock:
            current = self.get_settings()
            updated = current.model_copy(update={
                "questions_per_exam": public.questions_per_exam,
                "exam_duration_seconds": public.exam_duration_seconds,
            })
            self._write(updated.model_dump(by_alias=True))
        logger.info(
            f"시험 설정 저장: {updated.questions_per_exam}문항, {updated.exam_duration_seconds}초"
        )
        return updated

    def put_credentials(self, username: str, password_hash: str) -> None:
        with self._lock:
            current = self.get_settings()
            updated = current.model_copy(update={
                "admin_username": username,
                "admin_password": password_hash,
            })
            self._write(updated.model_dump(by_alias=True))
        logger.info(f"관리자 계정 변경: {username}")


# ── 결과 ─────────────────────────────────────────────────────────────────────

class ResultStore(JsonFileStore):

    def _load(self) -> list:
        """저장된 결과 목록 (원시 dict). 형식 오류는 ValueError로 전파."""
        try:
            data = self._read([])
        except json.JSONDecodeError as e:
            logger.error(f"결과 파일 읽기 실패: {self.path} ({e})")
            raise ValueError(RESULTS_UNREADABLE) from e
        if not isinstance(data, list):
            logger.error(f"결과 파일 형식 오류: {self.path}")
            raise ValueError(RESULTS_UNREADABLE)
        return data

    def list_results(self) -> List[ExamResult]:
        raw = self._load()
        try:
            return [ExamResult.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.error(f"결과 항목 형식 오류: {self.path} ({e.error_count()}건)")
            raise ValueError(RESULTS_UNREADABLE) from e

    def append_result(self, result: ExamResult) -> str:
        """결과를 추가하고 부여된 id (밀리초 타임스탬프 문자열)를 반환."""
        if not result.username or not result.timestamp:
            raise ValueError("Invalid test result data")
        with self._lock:
            raw = self._load()
            taken = {item.get("id") for item in raw}
            stamp = int(time.time() * 1000)
            while str(stamp) in taken:
                stamp += 1
            result_id = str(stamp)
            raw.append(result.with_id(result_id).to_wire())
            self._write(raw)
        return result_id

    def delete_result(self, result_id: str) -> bool:
        with self._lock:
            raw = self._load()
            kept = [item for item in raw if item.get("id") != result_id]
            if len(kept) == len(raw):
                return False
            self._write(kept)
        return True

    def delete_all(self) -> int:
        with self._lock:
            try:
                removed = len(self._load())
            except ValueError:
                # 손상된 파일도 전체 삭제로 복구한다
                removed = 0
            self._write([])
        return removed


# ── 로컬 키-값 저장소 ────────────────────────────────────────────────────────

class LocalStore(JsonFileStore):
    """
    클라이언트별 영속 키-값 저장소.
    값은 JSON 문자열로 저장되며, 손상된 값은 읽는 시점에 삭제 후 MalformedStoredState를 발생시킨다.
    """

    LOGIN_KEY = "loginData"
    HISTORY_KEY = "testHistory"
    ADMIN_KEY = "adminSession"

    def _load_all(self) -> dict:
        try:
            data = self._read({})
        except json.JSONDecodeError:
            logger.error(f"로컬 저장소 파일 손상, 초기화: {self.path}")
            self._write({})
            return {}
        return data if isinstance(data, dict) else {}

    def get_raw(self, key: str) -> Optional[str]:
        return self._load_all().get(key)

    def set_raw(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load_all()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load_all()
            if data.pop(key, None) is not None:
                self._write(data)

    def _get_json(self, key: str) -> Any:
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            logger.error(f"로컬 데이터 '{key}' 손상: {e}")
            self.remove(key)
            raise MalformedStoredState(key) from e

    def _set_json(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value, ensure_ascii=False))

    # 로그인 정보

    def get_login(self) -> Optional[ExamIdentity]:
        data = self._get_json(self.LOGIN_KEY)
        if data is None:
            return None
        try:
            return ExamIdentity.model_validate(data)
        except ValidationError as e:
            self.remove(self.LOGIN_KEY)
            raise MalformedStoredState(self.LOGIN_KEY) from e

    def set_login(self, identity: ExamIdentity) -> None:
        data = identity.model_dump(by_alias=True)
        data["timestamp"] = int(time.time() * 1000)
        self._set_json(self.LOGIN_KEY, data)

    def clear_login(self) -> None:
        self.remove(self.LOGIN_KEY)

    # 응시 기록

    def get_history(self) -> List[ExamResult]:
        data = self._get_json(self.HISTORY_KEY)
        if data is None:
            return []
        try:
            return [ExamResult.model_validate(item) for item in data]
        except (TypeError, ValidationError) as e:
            self.remove(self.HISTORY_KEY)
            raise MalformedStoredState(self.HISTORY_KEY) from e

    def save_history(self, history: List[ExamResult]) -> None:
        self._set_json(self.HISTORY_KEY, [r.to_wire() for r in history])

    def append_history(self, result: ExamResult) -> None:
        try:
            history = self.get_history()
        except MalformedStoredState:
            history = []
        history.append(result)
        self.save_history(history)

    def clear_history(self) -> None:
        self.save_history([])

    # 관리자 세션 표식

    def get_admin_marker(self, now: Optional[float] = None) -> Optional[Admin]:
        """만료되었거나 손상된 표식은 삭제 후 None."""
        data = self._get_json(self.ADMIN_KEY)
        if data is None:
            return None
        try:
            marker = Admin.model_validate(data)
        except ValidationError as e:
            self.remove(self.ADMIN_KEY)
            raise MalformedStoredState(self.ADMIN_KEY) from e
        if marker.is_expired(now):
            self.remove(self.ADMIN_KEY)
            return None
        return marker

    def set_admin_marker(self, marker: Admin) -> None:
        self._set_json(self.ADMIN_KEY, marker.model_dump())

    def clear_admin_marker(self) -> None:
        self.remove(self.ADMIN_KEY)
