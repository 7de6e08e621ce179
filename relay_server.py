"""
Multi-User AI Chat Relay Server
WebSocket으로 여러 사용자의 채팅을 중계하고, 각 메시지에 대한 AI 응답을 모든 참가자에게 전송합니다.
"""
import asyncio
import json
import logging
import os
import sys
import time
from typing import List, Literal, Optional
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from ai_gateway import FALLBACK_REPLY, AIResponseGateway, Generator, OpenAIGenerator
from broadcast_coordinator import BroadcastCoordinator
from chat_events import Disconnect, NonEmptyText, now_iso, parse_inbound, to_iso
from chat_transport import ConnectionMailbox, WebSocketHub
from context_store import ContextStore, ConversationContext
from relay_config import RelaySettings, configure_logging, load_settings
from relay_errors import ConfigurationError, TransportFault
from session_registry import SessionRegistry

logger = logging.getLogger(__name__)


# ===== Pydantic 모델 정의 =====
class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class BuddyRequest(BaseModel):
    message: NonEmptyText
    history: List[HistoryTurn] = []


class BuddyResponse(BaseModel):
    success: bool
    reply: str


def create_app(
    settings: RelaySettings,
    generate: Optional[Generator] = None,
    fail_fast: bool = False,
) -> FastAPI:
    """
    FastAPI 애플리케이션 생성

    Args:
        settings: 서버 설정
        generate: AI 생성 함수 (None이면 OpenAI 호환 클라이언트 사용)
        fail_fast: True면 이벤트 루프의 처리되지 않은 예외 발생 시 프로세스 종료

    Returns:
        FastAPI: 라우트가 등록된 애플리케이션
    """
    app = FastAPI(title="Multi-User AI Chat Relay", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if os.path.isdir(settings.static_dir):
        app.mount("/public", StaticFiles(directory=settings.static_dir), name="public")

    gateway = AIResponseGateway(
        generate if generate is not None else OpenAIGenerator(settings),
        timeout=settings.llm_timeout_seconds,
    )
    hub = WebSocketHub()
    coordinator = BroadcastCoordinator(
        transport=hub,
        gateway=gateway,
        registry=SessionRegistry(),
        contexts=ContextStore(settings.context_max_turns),
    )

    app.state.settings = settings
    app.state.hub = hub
    app.state.coordinator = coordinator
    app.state.started_at = time.monotonic()

    @app.on_event("startup")
    async def startup_event():
        if fail_fast:
            asyncio.get_running_loop().set_exception_handler(_fatal_loop_exception)
        logger.info(f"🚀 Chat relay 시작 (model: {settings.llm_model}, context: {settings.context_max_turns}턴)")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info(f"🛑 Chat relay 종료 (접속 사용자 {coordinator.registry.size()}명)")

    @app.get("/")
    async def root():
        return {
            "status": "running",
            "message": "Multi-User AI Chat Relay Server",
            "connectedUsers": coordinator.registry.size(),
        }

    # ===== 헬스 체크 엔드포인트 =====
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": now_iso(),
            "connectedUsers": coordinator.registry.size(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
        }

    @app.get("/api/users")
    async def list_users():
        users = [
            {"username": p.username, "joinTime": to_iso(p.join_time)}
            for p in coordinator.registry.participants()
        ]
        return {"users": users, "count": len(users)}

    @app.post("/api/buddy", response_model=BuddyResponse)
    async def buddy(request: BuddyRequest):
        """
        참가자 목록과 무관한 1회성 AI 응답

        - **message**: 사용자 메시지 (필수)
        - **history**: 이전 대화 [{role, content}] (최근 N턴만 사용)
        """
        context = ConversationContext.from_history(
            [turn.model_dump() for turn in request.history],
            settings.context_max_turns,
        )
        outcome = await gateway.respond(context.render(), request.message)
        if not outcome.ok:
            return JSONResponse(status_code=502, content={"success": False, "reply": FALLBACK_REPLY})
        return BuddyResponse(success=True, reply=outcome.text)

    # ===== WebSocket 엔드포인트 =====
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        connection_id = str(uuid4())
        await hub.connect(connection_id, websocket)
        coordinator.open(connection_id)

        mailbox = ConnectionMailbox(connection_id, coordinator.dispatch, max_pending=settings.mailbox_max_pending)
        mailbox.start()

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                data = message.get("text")
                if data is None:
                    await coordinator.reject_frame(connection_id, TransportFault("binary frames are not supported"))
                    continue
                try:
                    event = parse_inbound(json.loads(data))
                except TransportFault as e:
                    await coordinator.reject_frame(connection_id, e)
                    continue
                except Exception as e:
                    # JSON 오류 등 어떤 프레임도 수신 루프를 끝내지 않음
                    await coordinator.reject_frame(connection_id, TransportFault(f"unreadable frame: {str(e)}"))
                    continue

                try:
                    mailbox.put(event)
                except TransportFault as e:
                    await coordinator.reject_frame(connection_id, e)
        except WebSocketDisconnect:
            pass
        finally:
            # 소켓을 먼저 목록에서 빼고, 남은 이벤트 처리 후 퇴장 처리
            hub.disconnect(connection_id)
            await mailbox.close(Disconnect())

    return app


def _fatal_loop_exception(loop, context):
    logger.critical(f"❌ 처리되지 않은 비동기 예외: {context.get('message')}", exc_info=context.get("exception"))
    logging.shutdown()
    os._exit(1)


def _fatal_excepthook(exc_type, exc, tb):
    # 인터프리터가 종료 코드 1로 끝나기 전에 로그만 남김
    logger.critical("❌ 처리되지 않은 예외", exc_info=(exc_type, exc, tb))
    logging.shutdown()


def main():
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"❌ Error: {e.message}")
        sys.exit(1)

    configure_logging(settings.log_level)
    sys.excepthook = _fatal_excepthook

    app = create_app(settings, fail_fast=True)
    logger.info(f"🚀 Server is running on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
