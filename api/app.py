"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 저장소 초기화 + static 파일 서빙
"""

import logging
import os
import re
import threading
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

import config
from api.config import (
    CLIENT_COOKIE, CLIENT_COOKIE_MAX_AGE, SESSION_CLEANUP_INTERVAL, SESSION_COOKIE, STATIC_DIR,
)
from api.routes import router
import api.session as session
from quiz_exam_cbt.services.storage import QuestionBankStore, ResultStore, SettingsStore

logger = logging.getLogger(__name__)

# 로컬 저장소 파일명으로 쓰이므로 uuid4 hex 형식만 허용
_CLIENT_ID_RE = re.compile(r"[0-9a-f]{32}")


def create_app(data_dir: str | None = None, recorder_executor=None) -> FastAPI:
    app = FastAPI(title="Thi trắc nghiệm CBT", docs_url=None, redoc_url=None)

    # 파일 저장소
    data_dir = data_dir or config.DATA_DIR
    os.makedirs(data_dir, exist_ok=True)
    app.state.data_dir = data_dir
    app.state.local_dir = os.path.join(data_dir, config.LOCAL_STORE_DIRNAME)
    app.state.question_store = QuestionBankStore(os.path.join(data_dir, config.QUESTIONS_FILENAME))
    app.state.settings_store = SettingsStore(os.path.join(data_dir, config.SETTINGS_FILENAME))
    app.state.result_store = ResultStore(os.path.join(data_dir, config.RESULTS_FILENAME))
    app.state.recorder_executor = recorder_executor
    logger.info(f"데이터 디렉토리: {data_dir}")

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    # 브라우저 식별 ID(로컬 저장소 키)는 세션과 별도로 장기 쿠키에 유지
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        client_id = request.cookies.get(CLIENT_COOKIE, "")
        if not _CLIENT_ID_RE.fullmatch(client_id):
            client_id = uuid.uuid4().hex

        request.state.session_id = sid
        request.state.client_id = client_id
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session.SESSION_TTL,
        )
        response.set_cookie(
            key=CLIENT_COOKIE,
            value=client_id,
            httponly=True,
            samesite="lax",
            max_age=CLIENT_COOKIE_MAX_AGE,
        )
        return response

    app.include_router(router)

    # static 파일 마운트
    if os.path.isdir(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    # 만료 세션 주기적 정리 (5분마다)
    def _cleanup_loop():
        while True:
            time.sleep(SESSION_CLEANUP_INTERVAL)
            removed = session.cleanup_expired()
            if removed:
                logger.info(f"만료 세션 {removed}개 정리")

    t = threading.Thread(target=_cleanup_loop, daemon=True)
    t.start()

    return app
