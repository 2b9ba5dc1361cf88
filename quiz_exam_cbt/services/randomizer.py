"""
services/randomizer.py

출제 문제 무작위 선택 + 보기 순서 섞기.
Public API:
  - shuffle_in_place(items, rng)                 : Fisher–Yates 셔플 (제자리)
  - shuffle_choices(question, rng) -> Question    : 보기 섞기 + 정답 인덱스 재계산
  - select_session_questions(bank, count, rng)    : 중복 없는 문제 선택 (보기까지 섞인 사본)

설계 원칙:
- 편향 없는 셔플: i를 마지막 인덱스부터 1까지 내려가며 [0, i] 구간의 균등 난수 j와 교환
- 원본 문제은행은 절대 변경하지 않음. 항상 새 Question 사본을 반환
- 난수원은 기본적으로 프로세스 전역 random 모듈, 테스트에서는 random.Random 주입
"""

import logging
import random
from typing import List, MutableSequence, Optional, Sequence, TypeVar

from quiz_exam_cbt.models.question_model import Question

logger = logging.getLogger(__name__)

T = TypeVar("T")


def shuffle_in_place(items: MutableSequence[T], rng: Optional[random.Random] = None) -> None:
    """Fisher–Yates (Knuth) 셔플."""
    rand = rng or random
    for i in range(len(items) - 1, 0, -1):
        j = rand.randint(0, i)
        items[i], items[j] = items[j], items[i]


def shuffle_choices(question: Question, rng: Optional[random.Random] = None) -> Question:
    """
    보기 순서를 섞은 Question 사본을 반환한다.
    원래 인덱스를 함께 들고 섞어서, 원래 정답이 이동한 위치를 새 정답 인덱스로 삼는다.
    """
    indexed = list(enumerate(question.choices))
    shuffle_in_place(indexed, rng)

    new_choices = [text for _, text in indexed]
    new_correct = next(
        pos for pos, (orig_idx, _) in enumerate(indexed)
        if orig_idx == question.correct_choice_index
    )
    return Question(
        text=question.text,
        choices=new_choices,
        correct_choice_index=new_correct,
    )


def select_session_questions(
    bank: Sequence[Question],
    count: int,
    rng: Optional[random.Random] = None,
) -> List[Question]:
    """
    대상 문제 리스트에서 count개를 중복 없이 뽑아, 각 문제의 보기까지 섞은 사본을 반환한다.

    Args:
        bank:  한 대상(category)의 전체 문제 리스트.
        count: 출제 문제 수 (1 이상).
        rng:   난수원 (테스트용, 기본값은 random 모듈).

    Returns:
        min(count, len(bank))개의 Question 사본.
        문제가 부족하면 가능한 만큼만 반환하며 (중복으로 채우지 않음),
        호출자는 len(결과) < count 로 부족 여부를 판단한다.
    """
    if count < 1:
        raise ValueError("출제 문제 수(count)는 1 이상이어야 합니다.")

    pool = list(bank)
    if len(pool) < count:
        logger.warning(f"문제 부족: 요청 {count}개, 가용 {len(pool)}개, 가용 수로 제한")

    shuffle_in_place(pool, rng)
    return [shuffle_choices(q, rng) for q in pool[:count]]
