from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Question(BaseModel):
    """
    객관식 시험 문제 모델
    Pydantic v2 적용: JSON 파일/HTTP 본문은 기존 키(cauHoi, luaChon, dapAn)를 그대로 사용
    """
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(
        ...,
        alias="cauHoi",
        description="문제 본문"
    )
    choices: List[str] = Field(
        ...,
        alias="luaChon",
        description="보기 리스트 (객관식 선지, 기본 4개)"
    )
    correct_choice_index: int = Field(
        ...,
        alias="dapAn",
        description="정답 보기의 인덱스 (0-based)"
    )

    @field_validator('choices')
    @classmethod
    def validate_choices_length(cls, v: List[str]) -> List[str]:
        """
        검증 로직 1: 보기는 최소 2개 이상이어야 한다.
        """
        if len(v) < 2:
            raise ValueError("보기(choices)는 최소 2개 이상의 항목이 필요합니다.")
        return v

    @model_validator(mode='after')
    def validate_correct_index(self) -> 'Question':
        """
        검증 로직 2: 정답 인덱스는 반드시 보기 범위 안에 있어야 한다.
        """
        if not 0 <= self.correct_choice_index < len(self.choices):
            raise ValueError(
                f"정답 인덱스({self.correct_choice_index})가 보기 범위(0..{len(self.choices) - 1})를 벗어났습니다."
            )
        return self

    @classmethod
    def from_form(cls, text: str, choices: List[str], correct_choice_index: int) -> 'Question':
        """관리자 입력 → Question. 본문과 모든 보기는 공백 제거 후 비어 있으면 안 된다."""
        text = (text or "").strip()
        choices = [(c or "").strip() for c in choices]
        if not text or not all(choices):
            raise ValueError("Vui lòng nhập đầy đủ nội dung câu hỏi và các lựa chọn!")
        return cls(text=text, choices=choices, correct_choice_index=correct_choice_index)

    @property
    def correct_choice(self) -> str:
        return self.choices[self.correct_choice_index]

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# 대상(category) → 문제 리스트. 대상 내 순서는 보존되지만 의미는 없다.
QuestionBank = Dict[str, List[Question]]


def bank_from_wire(data: dict) -> QuestionBank:
    """JSON 객체 → QuestionBank. 형식이 잘못된 경우 ValueError (pydantic ValidationError 포함)."""
    if not isinstance(data, dict):
        raise ValueError("Dữ liệu câu hỏi không hợp lệ.")
    bank: QuestionBank = {}
    for category, items in data.items():
        if not isinstance(items, list):
            raise ValueError(f"Dữ liệu câu hỏi của '{category}' không hợp lệ.")
        bank[category] = [Question.model_validate(item) for item in items]
    return bank


def bank_to_wire(bank: QuestionBank) -> dict:
    return {category: [q.to_wire() for q in items] for category, items in bank.items()}
