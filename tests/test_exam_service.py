from datetime import datetime

import pytest

from conftest import make_bank
from quiz_exam_cbt.models.session_state import UNANSWERED
from quiz_exam_cbt.services.exam_service import (
    build_result, format_score, get_incorrect_indices, score_answers,
)


def _answers(bank, correct: int):
    """앞에서부터 correct개는 정답, 나머지는 오답."""
    return [
        q.correct_choice_index if i < correct else (q.correct_choice_index + 1) % 4
        for i, q in enumerate(bank)
    ]


def test_score_20_of_25():
    bank = make_bank(25)
    result = score_answers(bank, _answers(bank, 20))
    assert result.correct_count == 20
    assert result.score == 8.0
    assert format_score(result.score) == "8.00"


def test_score_zero():
    bank = make_bank(10)
    result = score_answers(bank, [UNANSWERED] * 10)
    assert result == (0, 0.0)
    assert format_score(result.score) == "0.00"


def test_score_rounds_to_two_decimals():
    bank = make_bank(9)
    result = score_answers(bank, _answers(bank, 7))
    assert result.score == round(7 / 9 * 10, 2) == 7.78


def test_unanswered_counts_as_incorrect():
    bank = make_bank(4)
    answers = [bank[0].correct_choice_index, UNANSWERED, UNANSWERED, UNANSWERED]
    assert score_answers(bank, answers).correct_count == 1


def test_score_empty_selection_is_rejected():
    with pytest.raises(ValueError):
        score_answers([], [])


def test_incorrect_indices_skip_unanswered():
    bank = make_bank(4)
    answers = [
        bank[0].correct_choice_index,
        (bank[1].correct_choice_index + 1) % 4,
        UNANSWERED,
        (bank[3].correct_choice_index + 2) % 4,
    ]
    assert get_incorrect_indices(bank, answers) == [1, 3]


def test_build_result_snapshots_session(identity):
    bank = make_bank(5)
    answers = _answers(bank, 3)
    result = build_result(identity, bank, answers, now=datetime(2026, 10, 19, 8, 30, 5))

    assert result.username == identity.username
    assert result.category == "Chiensimoi"
    assert (result.rank, result.role, result.unit) == ("Binh nhì", "Chiến sĩ", "Đại đội 1")
    assert result.timestamp == "19/10/2026 08:30:05"
    assert (result.correct, result.total, result.score) == (3, 5, "6.00")
    assert result.id is None

    answers[0] = UNANSWERED
    bank[0].choices[0] = "changed"
    assert result.answers[0] != UNANSWERED
    assert result.questions[0].choices[0] == "Q0-A"


def test_build_result_wire_keys(identity):
    bank = make_bank(2)
    wire = build_result(identity, bank, _answers(bank, 2)).to_wire()
    assert {"username", "doituong", "capbac", "chucvu", "donvi", "timestamp",
            "correct", "total", "score", "answers", "questions"} <= set(wire)
    assert "id" not in wire
    assert set(wire["questions"][0]) == {"cauHoi", "luaChon", "dapAn"}


def test_build_result_without_identity():
    bank = make_bank(2)
    result = build_result(None, bank, _answers(bank, 1), category="Chiensimoi")
    assert result.username == ""
    assert result.category == "Chiensimoi"
