import os
from concurrent.futures import Executor, Future

import pytest

from quiz_exam_cbt.models.question_model import Question
from quiz_exam_cbt.models.session_state import ExamIdentity, PublicSettings


def make_bank(n: int, prefix: str = "Q") -> list:
    return [
        Question(
            text=f"{prefix}{i}",
            choices=[f"{prefix}{i}-A", f"{prefix}{i}-B", f"{prefix}{i}-C", f"{prefix}{i}-D"],
            correct_choice_index=i % 4,
        )
        for i in range(n)
    ]


class FakeQuestionStore:
    def __init__(self, bank: dict):
        self.bank = bank

    def get_category(self, category: str) -> list:
        return self.bank.get(category, [])


class FakeSettingsStore:
    def __init__(self, count: int = 25, duration: int = 1200):
        self.count = count
        self.duration = duration

    def get_public(self) -> PublicSettings:
        return PublicSettings(questions_per_exam=self.count, exam_duration_seconds=self.duration)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRecorder:
    def __init__(self, fail_with: Exception = None):
        self.recorded = []
        self.fail_with = fail_with

    def record(self, result, on_failure=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.recorded.append(result)


class ImmediateExecutor(Executor):
    """submit 즉시 같은 스레드에서 실행. 백그라운드 저장을 결정적으로 테스트하기 위함."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor(Executor):
    """run_pending()을 부를 때까지 작업을 보류. 응답 이후에 끝나는 원격 저장을 흉내냄."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


@pytest.fixture
def identity() -> ExamIdentity:
    return ExamIdentity(
        username="Nguyễn Văn A",
        category="Chiensimoi",
        unit="Đại đội 1",
        rank="Binh nhì",
        role="Chiến sĩ",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path) -> str:
    path = os.path.join(str(tmp_path), "data")
    os.makedirs(path)
    return path
