"""
models/session_state.py

시험 세션·결과·설정 모델.
Pydantic BaseModel 기반: 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from quiz_exam_cbt.models.question_model import Question

UNANSWERED = -1


class ExamMode(str, Enum):
    REAL = "real"
    PRACTICE = "practice"


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class ExamIdentity(BaseModel):
    """응시자 신원 정보. 로그인 시 다섯 항목 모두 필수."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    username: str = Field(..., description="họ và tên")
    category: str = Field(..., alias="doituong", description="đối tượng")
    unit: str = Field(..., alias="donvi", description="đơn vị")
    rank: str = Field(..., alias="capbac", description="cấp bậc")
    role: str = Field(..., alias="chucvu", description="chức vụ")

    @field_validator('username', 'category', 'unit', 'rank', 'role')
    @classmethod
    def strip_and_require(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Vui lòng nhập đầy đủ thông tin trước khi vào thi!")
        return v


class ExamSession(BaseModel):
    """
    한 번의 응시(세션) 전체 상태.

    Attributes:
        source_category:    출제 대상 (category 키)
        selected_questions: 보기 순서까지 섞인 문제 사본
        answers:            사용자 답안지. 인덱스별 선택 보기 번호, 미응답은 -1
        mode:               실전(real) / 연습(practice). 세션 중 변경 불가
        start_timestamp:    시작 시각 (Unix timestamp)
        duration_seconds:   제한 시간 (초)
        submitted:          제출 완료 여부
    """

    source_category: str
    selected_questions: List[Question] = Field(default_factory=list)
    answers: List[int] = Field(default_factory=list)
    mode: ExamMode = ExamMode.REAL
    start_timestamp: float = Field(default_factory=time.time)
    duration_seconds: int = Field(..., ge=1)
    submitted: bool = False

    @model_validator(mode='after')
    def fill_answers(self) -> 'ExamSession':
        if not self.answers:
            self.answers = [UNANSWERED] * len(self.selected_questions)
        if len(self.answers) != len(self.selected_questions):
            raise ValueError("답안 수와 문제 수가 일치하지 않습니다.")
        return self

    def remaining_seconds(self, now: float) -> int:
        """남은 시간(초). 경과 시간은 항상 시작 시각 기준으로 다시 계산한다."""
        elapsed = int(now - self.start_timestamp)
        return max(0, self.duration_seconds - elapsed)


class ExamResult(BaseModel):
    """제출된 시험 결과. 생성 후 변경 불가."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: Optional[str] = None
    username: str
    category: str = Field(..., alias="doituong")
    rank: str = Field("", alias="capbac")
    role: str = Field("", alias="chucvu")
    unit: str = Field("", alias="donvi")
    timestamp: str
    correct: int = Field(..., ge=0)
    total: int = Field(..., ge=1)
    score: str
    answers: List[int] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def with_id(self, result_id: str) -> 'ExamResult':
        return self.model_copy(update={"id": result_id})


class PublicSettings(BaseModel):
    """관리자 자격 증명을 제외한 공개 설정."""

    model_config = ConfigDict(populate_by_name=True)

    questions_per_exam: int = Field(..., alias="defaultQuestionsCount", ge=1)
    exam_duration_seconds: int = Field(..., alias="examTime", ge=1)


class Settings(PublicSettings):
    """settings.json 전체 (관리자 계정 포함). adminPassword는 MD5 해시."""

    admin_username: str = Field(..., alias="adminUsername")
    admin_password: str = Field(..., alias="adminPassword")

    def public(self) -> PublicSettings:
        return PublicSettings(
            questions_per_exam=self.questions_per_exam,
            exam_duration_seconds=self.exam_duration_seconds,
        )
