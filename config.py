import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.path.join(BASE_DIR, "launch.log")
DATA_DIR = os.getenv("CBT_DATA_DIR", os.path.join(BASE_DIR, "data"))

# 데이터 파일명 (DATA_DIR 기준)
QUESTIONS_FILENAME = "questions.json"
SETTINGS_FILENAME = "settings.json"
RESULTS_FILENAME = "test-results.json"
LOCAL_STORE_DIRNAME = "local"

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 시험 기본값
DEFAULT_QUESTIONS_COUNT = 25
DEFAULT_EXAM_TIME = 20 * 60          # 초 단위 (20분)
LOW_TIME_WARNING_SECONDS = 60        # 남은 시간 1분 경고

# 관리자 기본 계정 (비밀번호는 MD5 해시로 저장)
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"
MIN_ADMIN_USERNAME_LENGTH = 3
MIN_ADMIN_PASSWORD_LENGTH = 6

# 응시 대상 (đối tượng)
CATEGORIES = {
    "Siquan-QNCN": "Sĩ quan, QNCN",
    "Chiensimoi": "Chiến sĩ mới",
    "Chiensinamthunhat": "Chiến sĩ năm thứ nhất",
    "Chiensinamthuhai": "Chiến sĩ năm thứ hai",
    "Lopnhanthucvedang": "Lớp nhận thức về đảng",
    "Lopdangvienmoi": "Lớp đảng viên mới",
}
DEFAULT_CATEGORY = "Siquan-QNCN"
