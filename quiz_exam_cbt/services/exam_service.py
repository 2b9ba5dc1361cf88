"""
services/exam_service.py

시험 채점 및 결과 생성 비즈니스 로직.
순수 Python 함수로 구성: UI 코드, 전역 상태 변경 없음.
"""

from datetime import datetime
from typing import List, NamedTuple, Optional, Sequence

from quiz_exam_cbt.models.question_model import Question
from quiz_exam_cbt.models.session_state import UNANSWERED, ExamIdentity, ExamResult

TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"


class ScoreResult(NamedTuple):
    correct_count: int
    score: float


def score_answers(
    selected: Sequence[Question],
    answers: Sequence[int],
) -> ScoreResult:
    """
    사용자 답안을 채점하여 10점 만점 환산 점수를 반환한다.

    정답 판정 기준: answers[i] == selected[i].correct_choice_index
    응답하지 않은 문제(-1)는 오답으로 처리.

    Args:
        selected: 출제된 Question 리스트 (1개 이상).
        answers:  인덱스별 선택 보기 번호.

    Returns:
        ScoreResult(correct_count, score). score는 소수점 둘째 자리 반올림.

    Raises:
        ValueError: selected가 빈 리스트인 경우 (호출자가 보장해야 하는 전제 조건).
    """
    if not selected:
        raise ValueError("채점할 문제가 없습니다.")

    correct_count = sum(
        1
        for i, q in enumerate(selected)
        if i < len(answers) and answers[i] == q.correct_choice_index
    )

    return ScoreResult(correct_count, round(correct_count / len(selected) * 10, 2))


def format_score(score: float) -> str:
    """8.0 -> '8.00'"""
    return f"{score:.2f}"


def get_incorrect_indices(
    selected: Sequence[Question],
    answers: Sequence[int],
) -> List[int]:
    """
    응답했지만 틀린 문제의 인덱스 리스트 (결과 화면의 ✗ 표시용).
    미응답 문제는 포함하지 않는다.
    """
    return [
        i for i, q in enumerate(selected)
        if answers[i] != UNANSWERED and answers[i] != q.correct_choice_index
    ]


def build_result(
    identity: Optional[ExamIdentity],
    selected: Sequence[Question],
    answers: Sequence[int],
    category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExamResult:
    """
    채점 후 변경 불가능한 ExamResult를 만든다 (답안·문제는 스냅샷 복사).
    identity가 없으면 (연습 모드 비로그인) 신원 항목은 빈 문자열.
    """
    correct_count, score = score_answers(selected, answers)
    return ExamResult(
        username=identity.username if identity else "",
        category=category or (identity.category if identity else ""),
        rank=identity.rank if identity else "",
        role=identity.role if identity else "",
        unit=identity.unit if identity else "",
        timestamp=(now or datetime.now()).strftime(TIMESTAMP_FORMAT),
        correct=correct_count,
        total=len(selected),
        score=format_score(score),
        answers=list(answers),
        questions=[q.model_copy(deep=True) for q in selected],
    )
