"""
services/result_recorder.py

실전 모드 결과 저장.
  1) 로컬 응시 기록에 즉시 추가 (사용자 입장에서의 확정 기록)
  2) 결과 저장소(원격)에 백그라운드로 추가. 완료를 기다리지 않고, 실패 시 재시도하지 않음

원격 저장 실패는 PersistenceFailure 알림으로 한 번만 전달된다.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional

from quiz_exam_cbt.errors import PersistenceFailure
from quiz_exam_cbt.models.session_state import ExamResult
from quiz_exam_cbt.services.storage import LocalStore, ResultStore

logger = logging.getLogger(__name__)

_MAX_WORKERS = 2

_default_executor: Optional[ThreadPoolExecutor] = None


def _shared_executor() -> ThreadPoolExecutor:
    global _default_executor
    if _default_executor is None:
        _default_executor = ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="result-append")
    return _default_executor


class ResultRecorder:

    def __init__(
        self,
        local_store: LocalStore,
        result_store: ResultStore,
        executor: Optional[Executor] = None,
    ):
        self.local_store = local_store
        self.result_store = result_store
        self.executor = executor or _shared_executor()

    def record(
        self,
        result: ExamResult,
        on_failure: Optional[Callable[[PersistenceFailure], None]] = None,
    ) -> Future:
        """로컬 기록 추가 후 원격 추가 작업을 예약하고 Future를 반환 (호출자는 기다리지 않아도 됨)."""
        self.local_store.append_history(result)
        future = self.executor.submit(self.result_store.append_result, result)
        future.add_done_callback(partial(self._on_done, on_failure))
        return future

    def _on_done(self, on_failure, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            logger.info(f"결과 저장 완료: id={future.result()}")
            return
        logger.warning(f"결과 원격 저장 실패 (재시도 없음): {exc}")
        if on_failure is not None:
            on_failure(PersistenceFailure())
