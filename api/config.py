import os
import sys

# 기본 디렉토리 설정
IF_FROZEN = getattr(sys, "frozen", False)
BASE_DIR = sys._MEIPASS if IF_FROZEN else os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
AUDIO_DIR = os.path.join(STATIC_DIR, "audio")
AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg", ".m4a", ".aac")

# 세션 설정
SESSION_COOKIE = "cbt_session"
SESSION_TTL = 3600                  # 1시간
SESSION_CLEANUP_INTERVAL = 300      # 5분
ADMIN_SESSION_TTL = 8 * 3600        # 관리자 로그인 유지 시간 (8시간)

# 브라우저 식별 쿠키: 로컬 저장소(로그인 정보, 응시 기록) 파일 키. 서버 재시작/세션 만료와 무관하게 유지
CLIENT_COOKIE = "cbt_client"
CLIENT_COOKIE_MAX_AGE = 365 * 24 * 3600
