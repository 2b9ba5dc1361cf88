"""
services/auth_service.py

관리자 인증 / 계정 변경.
비밀번호는 settings.json에 MD5 해시로 저장된 기존 형식을 그대로 따른다.
"""

import logging
import time
from typing import Optional

import config
from quiz_exam_cbt.errors import InvalidCredentials
from quiz_exam_cbt.models.login_state import Admin
from quiz_exam_cbt.services.storage import SettingsStore, hash_password

logger = logging.getLogger(__name__)


def verify_admin(
    store: SettingsStore,
    username: str,
    password: str,
    session_ttl: int,
    now: Optional[float] = None,
) -> Admin:
    """
    관리자 로그인. 성공 시 만료 시각이 포함된 Admin 로그인 상태를 반환한다.

    Raises:
        ValueError:         입력이 비어 있음.
        InvalidCredentials: 계정 불일치.
    """
    if not username or not password:
        raise ValueError("Vui lòng nhập đầy đủ tên admin và mật khẩu!")

    settings = store.get_settings()
    if username != settings.admin_username or hash_password(password) != settings.admin_password:
        logger.warning(f"관리자 로그인 실패: {username}")
        raise InvalidCredentials()

    logger.info(f"관리자 로그인: {username}")
    return Admin(username=settings.admin_username, session_expiry=(now or time.time()) + session_ttl)


def is_admin_username(store: SettingsStore, username: str) -> bool:
    """세션 복원용: 사용자명만 확인한다 (비밀번호 검증은 로그인 시점에 수행)."""
    return bool(username) and username == store.get_settings().admin_username


def change_credentials(
    store: SettingsStore,
    current_username: str,
    current_password: str,
    new_username: str = "",
    new_password: str = "",
) -> str:
    """
    현재 계정 확인 후 사용자명/비밀번호를 변경한다. 빈 값은 기존 값을 유지.

    Returns:
        최종 사용자명.

    Raises:
        ValueError:         필수 입력 누락 또는 길이 조건 위반.
        InvalidCredentials: 현재 계정 불일치.
    """
    if not current_username or not current_password:
        raise ValueError("Current username and password are required")

    settings = store.get_settings()
    if (current_username != settings.admin_username
            or hash_password(current_password) != settings.admin_password):
        raise InvalidCredentials("Sai thông tin đăng nhập!")

    final_username = new_username or current_username
    if len(final_username) < config.MIN_ADMIN_USERNAME_LENGTH:
        raise ValueError(f"Username must be at least {config.MIN_ADMIN_USERNAME_LENGTH} characters")
    if new_password and len(new_password) < config.MIN_ADMIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {config.MIN_ADMIN_PASSWORD_LENGTH} characters")

    password_hash = hash_password(new_password) if new_password else settings.admin_password
    store.put_credentials(final_username, password_hash)
    return final_username
