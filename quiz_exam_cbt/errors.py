"""
errors.py

시험 도메인 예외 계층.
서비스 계층은 이 예외를 발생시키고, API 계층(api/routes.py)이 HTTP 응답으로 변환한다.
"""


class ExamError(Exception):
    """시험 도메인 예외의 기반 클래스."""

    message = "Đã xảy ra lỗi."

    def __init__(self, message: str = ""):
        super().__init__(message or self.message)


class EmptyCategory(ExamError):
    """요청한 대상(category)에 문제가 없음. 세션 시작 불가."""

    message = "Chưa có câu hỏi cho đối tượng này! Vui lòng chọn đối tượng khác hoặc liên hệ admin."

    def __init__(self, category: str):
        super().__init__()
        self.category = category


class InsufficientQuestions(ExamError):
    """
    출제 가능한 문제 수가 설정값보다 적음.
    치명적 오류가 아니며, 세션은 가능한 만큼의 문제로 진행된다 (경고 알림 전용).
    """

    def __init__(self, category: str, requested: int, available: int):
        super().__init__(
            f"Đối tượng '{category}' chỉ có {available}/{requested} câu hỏi. "
            f"Bài thi sẽ gồm {available} câu."
        )
        self.category = category
        self.requested = requested
        self.available = available


class PersistenceFailure(ExamError):
    """원격 결과 저장/삭제 실패. 로컬 기록은 유효하며 재시도하지 않는다."""

    message = "Không thể lưu kết quả lên máy chủ. Kết quả vẫn được lưu trong lịch sử thi."


class MalformedStoredState(ExamError):
    """로컬 저장소의 JSON이 손상됨. 해당 키는 초기화된다."""

    def __init__(self, key: str):
        super().__init__(f"Dữ liệu '{key}' bị lỗi. Đã khởi tạo lại.")
        self.key = key


class ConfirmationRequired(ExamError):
    """실전 모드 수동 제출은 사용자 확인이 필요함."""

    message = "Bạn có chắc chắn muốn nộp bài không?"


class InvalidCredentials(ExamError):
    """관리자 인증 실패."""

    message = "Thông tin đăng nhập không đúng!"
