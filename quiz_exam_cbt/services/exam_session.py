"""
services/exam_session.py

한 번의 응시를 관리하는 상태 머신.

    NOT_STARTED ──start──▶ IN_PROGRESS ──submit / 시간 종료──▶ SUBMITTED

- 모드(실전/연습)는 start 시점에 고정되며 세션 중 바뀌지 않는다.
- 남은 시간은 tick 때마다 (now - start_timestamp)로 다시 계산한다. 카운터를 줄이지 않으므로
  tick이 늦거나 건너뛰어도 오차가 누적되지 않는다.
- 모든 변경 연산(start / select_answer / tick / submit)은 한 스레드에서 순차 호출된다고 가정한다.
  예외: 원격 저장 실패 알림은 저장 작업 스레드에서 on_persist_failure(기본값 notify)로 들어온다.
  뒤로 가기/재시작 뒤에도 알림이 남아야 하면 머신 밖의 알림 큐를 on_persist_failure로 넘긴다.

저장소 의존성은 주입받는다 (question_store.get_category, settings_store.get_public, recorder.record).
"""

import logging
import random
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import config
from quiz_exam_cbt.errors import (
    ConfirmationRequired, EmptyCategory, ExamError, InsufficientQuestions, PersistenceFailure,
)
from quiz_exam_cbt.models.session_state import (
    UNANSWERED, ExamIdentity, ExamMode, ExamResult, ExamSession, SessionStatus,
)
from quiz_exam_cbt.services.exam_service import build_result, get_incorrect_indices, score_answers
from quiz_exam_cbt.services.randomizer import select_session_questions

logger = logging.getLogger(__name__)

LOW_TIME_MESSAGE = "Còn 1 phút nữa! Hãy nhanh chóng hoàn thành bài thi."


class Notice(NamedTuple):
    """화면에 한 번 띄울 알림."""
    kind: str
    message: str

    @classmethod
    def from_error(cls, error: ExamError) -> "Notice":
        return cls(type(error).__name__, str(error))


class ExamSessionMachine:

    def __init__(
        self,
        question_store,
        settings_store,
        recorder=None,
        identity: Optional[ExamIdentity] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        on_persist_failure: Optional[Callable[[ExamError], None]] = None,
    ):
        self.question_store = question_store
        self.settings_store = settings_store
        self.recorder = recorder
        self.identity = identity
        self.clock = clock
        self.rng = rng
        self.on_persist_failure = on_persist_failure or self.notify

        self.status = SessionStatus.NOT_STARTED
        self.session: Optional[ExamSession] = None
        self.result: Optional[ExamResult] = None
        self.notices: List[Notice] = []
        self._last_remaining = 0
        self._low_time_warned = False

    # ── 알림 ─────────────────────────────────────────────────────────────────

    def notify(self, error: ExamError) -> None:
        self.notices.append(Notice.from_error(error))

    def drain_notices(self) -> List[Notice]:
        drained, self.notices = self.notices, []
        return drained

    # ── 전이 ─────────────────────────────────────────────────────────────────

    def start(self, category: str, mode: ExamMode = ExamMode.REAL) -> Dict[str, Any]:
        """
        대상 문제은행에서 세션을 만든다.

        Raises:
            EmptyCategory: 대상에 문제가 없음. 기존 상태는 그대로 유지된다.
        """
        pool = self.question_store.get_category(category)
        if not pool:
            logger.info(f"빈 대상으로 시작 시도: {category}")
            raise EmptyCategory(category)

        settings = self.settings_store.get_public()
        selected = select_session_questions(pool, settings.questions_per_exam, self.rng)

        self.session = ExamSession(
            source_category=category,
            selected_questions=selected,
            mode=mode,
            start_timestamp=self.clock(),
            duration_seconds=settings.exam_duration_seconds,
        )
        self.status = SessionStatus.IN_PROGRESS
        self.result = None
        self.notices = []
        self._last_remaining = settings.exam_duration_seconds
        self._low_time_warned = False

        if len(selected) < settings.questions_per_exam:
            self.notify(InsufficientQuestions(category, settings.questions_per_exam, len(selected)))

        logger.info(
            f"시험 시작: 대상={category}, 모드={mode.value}, "
            f"{len(selected)}문항, {settings.exam_duration_seconds}초"
        )
        return self.snapshot()

    def select_answer(self, question_index: int, choice_index: int) -> bool:
        """
        답안 선택 (이전 선택 덮어쓰기). 진행 중이 아니거나, 시간이 끝났거나,
        인덱스가 범위를 벗어나면 아무것도 하지 않고 False.
        """
        if self.status != SessionStatus.IN_PROGRESS:
            return False
        if self.session.remaining_seconds(self.clock()) <= 0:
            return False
        if not 0 <= question_index < len(self.session.selected_questions):
            return False
        if not 0 <= choice_index < len(self.session.selected_questions[question_index].choices):
            return False

        self.session.answers[question_index] = choice_index
        return True

    def tick(self, now: Optional[float] = None) -> int:
        """
        1초마다 호출되는 타이머 훅. 남은 시간(초)을 반환한다.
        60초 경계를 넘는 순간 1회 경고, 0초가 되면 강제 제출. 제출 이후 tick은 무시된다.
        """
        if self.status != SessionStatus.IN_PROGRESS:
            return self._remaining(now)

        remaining = self.session.remaining_seconds(self.clock() if now is None else now)

        threshold = config.LOW_TIME_WARNING_SECONDS
        if not self._low_time_warned and self._last_remaining > threshold >= remaining > 0:
            self._low_time_warned = True
            self.notices.append(Notice("LowTimeWarning", LOW_TIME_MESSAGE))
        self._last_remaining = remaining

        if remaining <= 0:
            logger.info("시험 시간 종료, 자동 제출")
            self.submit(forced=True)
        return remaining

    def submit(self, forced: bool = False, confirmed: bool = False) -> ExamResult:
        """
        채점 후 SUBMITTED로 전이. 이미 제출된 경우 같은 결과를 그대로 반환한다 (부수 효과 없음).

        Raises:
            ConfirmationRequired: 실전 모드에서 강제 제출이 아니고 사용자 확인도 없는 경우.
            ValueError:           진행 중인 세션이 없는 경우.
        """
        if self.status == SessionStatus.SUBMITTED:
            return self.result
        if self.status != SessionStatus.IN_PROGRESS or not self.session.selected_questions:
            raise ValueError("Lỗi: Không có câu hỏi để chấm điểm!")
        if self.session.mode == ExamMode.REAL and not forced and not confirmed:
            raise ConfirmationRequired()

        self.session.submitted = True
        self.status = SessionStatus.SUBMITTED
        self.result = build_result(
            self.identity,
            self.session.selected_questions,
            self.session.answers,
            category=self.session.source_category,
        )
        logger.info(
            f"시험 제출: {self.result.correct}/{self.result.total}, 점수 {self.result.score} "
            f"({'자동' if forced else '수동'}, {self.session.mode.value})"
        )

        if self.session.mode == ExamMode.REAL and self.recorder is not None:
            try:
                self.recorder.record(self.result, on_failure=self.on_persist_failure)
            except (OSError, ValueError, RuntimeError) as e:
                logger.error(f"결과 저장 실패: {e}")
                self.on_persist_failure(PersistenceFailure())
        return self.result

    def reset(self) -> None:
        """세션 폐기 (뒤로 가기 / 로그아웃). 진행 중인 원격 저장은 그대로 완료/실패하도록 둔다."""
        self.status = SessionStatus.NOT_STARTED
        self.session = None
        self.result = None
        self.notices = []
        self._last_remaining = 0
        self._low_time_warned = False

    # ── 조회 ─────────────────────────────────────────────────────────────────

    def _remaining(self, now: Optional[float] = None) -> int:
        if self.session is None or self.status == SessionStatus.SUBMITTED:
            return 0
        return self.session.remaining_seconds(self.clock() if now is None else now)

    def snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        표시 계층에 넘길 현재 상태.
        진행 중에는 정답 인덱스를 숨기고, 제출 후에는 정답·채점 결과를 함께 보낸다.
        """
        if self.session is None:
            return {"state": self.status.value, "submitted": False}

        session = self.session
        submitted = self.status == SessionStatus.SUBMITTED
        if submitted:
            questions = [q.to_wire() for q in session.selected_questions]
        else:
            questions = [
                {"cauHoi": q.text, "luaChon": list(q.choices)}
                for q in session.selected_questions
            ]

        snap: Dict[str, Any] = {
            "state": self.status.value,
            "mode": session.mode.value,
            "category": session.source_category,
            "questions": questions,
            "answers": list(session.answers),
            "answered_count": sum(1 for a in session.answers if a != UNANSWERED),
            "total": len(session.selected_questions),
            "remaining_seconds": self._remaining(now),
            "duration_seconds": session.duration_seconds,
            "start_timestamp": session.start_timestamp,
            "submitted": submitted,
        }
        if submitted:
            correct_count, score = score_answers(session.selected_questions, session.answers)
            snap.update({
                "correct": correct_count,
                "score": score,
                "score_text": self.result.score,
                "incorrect_indices": get_incorrect_indices(session.selected_questions, session.answers),
            })
        return snap
