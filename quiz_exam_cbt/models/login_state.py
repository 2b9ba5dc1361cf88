"""
models/login_state.py

"누가 어떤 역할로 로그인했는가"를 하나의 태그드 유니온으로 표현한다.
  - Anonymous : 로그인 전
  - Examinee  : 응시자 (신원 정보 포함)
  - Admin     : 관리자 (세션 만료 시각 포함)
"""

import time
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from quiz_exam_cbt.models.session_state import ExamIdentity


class Anonymous(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["anonymous"] = "anonymous"


class Examinee(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["examinee"] = "examinee"
    identity: ExamIdentity


class Admin(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["admin"] = "admin"
    username: str
    session_expiry: float = Field(..., description="관리자 세션 만료 시각 (Unix timestamp)")

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.session_expiry


LoginState = Union[Anonymous, Examinee, Admin]
