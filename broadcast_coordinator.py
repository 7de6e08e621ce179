"""
Broadcast Coordinator
수신 이벤트 종류에 따라 참가자/컨텍스트를 갱신하고, AI 응답을 받아 전체에 전송합니다.

연결 상태: CONNECTED (연결만 됨) → JOINED (사용자 등록) → CLOSED (종료)
"""
import enum
import logging
from typing import Dict, Optional

from ai_gateway import FALLBACK_REPLY, AIResponseGateway
from chat_events import (
    AIMessage,
    ChatMessage,
    Disconnect,
    ErrorEvent,
    InboundEvent,
    Typing,
    UserCount,
    UserJoin,
    UserJoined,
    UserLeft,
    UserMessage,
    UserTyping,
    now_millis,
)
from chat_transport import Transport
from context_store import ContextStore
from relay_errors import IdentityNotFound, TransportFault
from session_registry import SessionRegistry

logger = logging.getLogger(__name__)

USER_NOT_FOUND_MESSAGE = "User not found. Please reconnect."
HANDLER_FAILED_MESSAGE = "Failed to process message"
INVALID_PAYLOAD_MESSAGE = "Invalid event payload"
MAILBOX_FULL_MESSAGE = "Too many pending messages. Please slow down."


class ConnectionState(enum.Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    CLOSED = "closed"


class BroadcastCoordinator:
    """참가자 목록과 대화 컨텍스트를 소유하는 이벤트 처리기"""

    def __init__(
        self,
        transport: Transport,
        gateway: AIResponseGateway,
        registry: Optional[SessionRegistry] = None,
        contexts: Optional[ContextStore] = None,
    ):
        self.transport = transport
        self.gateway = gateway
        self.registry = registry if registry is not None else SessionRegistry()
        self.contexts = contexts if contexts is not None else ContextStore()
        self._states: Dict[str, ConnectionState] = {}

    def open(self, connection_id: str) -> None:
        self._states[connection_id] = ConnectionState.CONNECTED

    def state_of(self, connection_id: str) -> Optional[ConnectionState]:
        return self._states.get(connection_id)

    async def dispatch(self, connection_id: str, event: InboundEvent) -> None:
        """
        이벤트 하나를 처리. 처리 중 예외는 여기서 잡아 발신자에게 error 이벤트로 전달

        Args:
            connection_id: 이벤트를 보낸 연결
            event: 검증된 수신 이벤트
        """
        state = self._states.get(connection_id)
        if state is None or state is ConnectionState.CLOSED:
            logger.debug(f"종료되었거나 알 수 없는 연결의 이벤트 무시: {connection_id} {event.event_name}")
            return

        try:
            if isinstance(event, UserJoin):
                await self.handle_join(connection_id, event)
            elif isinstance(event, ChatMessage):
                await self.handle_message(connection_id, event)
            elif isinstance(event, Typing):
                await self.handle_typing(connection_id, event)
            elif isinstance(event, Disconnect):
                await self.handle_disconnect(connection_id)
            else:
                raise TransportFault(f"unsupported event: {event.event_name}")
        except Exception as e:
            fault = e if isinstance(e, TransportFault) else TransportFault(str(e))
            logger.exception(f"❌ {connection_id} {event.event_name} 처리 오류: {fault.message}")
            if self._states.get(connection_id) in (ConnectionState.CONNECTED, ConnectionState.JOINED):
                await self.transport.send(connection_id, ErrorEvent(message=HANDLER_FAILED_MESSAGE))

    async def reject_frame(self, connection_id: str, fault: TransportFault) -> None:
        """검증에 실패했거나 대기열이 가득 차 받지 못한 프레임은 발신자에게만 error 전송"""
        logger.warning(f"⚠️  {connection_id} 프레임 거부 ({fault.code}): {fault.message}")
        message = MAILBOX_FULL_MESSAGE if fault.code == "mailbox_full" else INVALID_PAYLOAD_MESSAGE
        await self.transport.send(connection_id, ErrorEvent(message=message))

    async def handle_join(self, connection_id: str, event: UserJoin) -> None:
        participant = self.registry.join(connection_id, event.username)
        self._states[connection_id] = ConnectionState.JOINED
        logger.info(f"👤 사용자 입장: {participant.username} ({connection_id})")

        await self.transport.broadcast_except(connection_id, UserJoined.for_user(participant.username))
        await self.transport.broadcast(UserCount(count=self.registry.size()))

    async def handle_message(self, connection_id: str, event: ChatMessage) -> None:
        try:
            participant = self.registry.require(connection_id)
        except IdentityNotFound as e:
            logger.warning(f"⚠️  {e.message}")
            await self.transport.send(connection_id, ErrorEvent(message=USER_NOT_FOUND_MESSAGE))
            return

        logger.info(f"💬 {participant.username}: {event.message}")

        # AI 응답을 기다리지 않고 사용자 메시지를 먼저 전체에 전송
        message_id = now_millis()
        await self.transport.broadcast(
            UserMessage(id=message_id, username=participant.username, message=event.message)
        )

        self.contexts.append_user(connection_id, event.message)
        prompt_context = self.contexts.render(connection_id)

        logger.info("🤖 AI 응답 생성 중...")
        outcome = await self.gateway.respond(prompt_context, event.message)

        if outcome.ok:
            self.contexts.append_assistant(connection_id, outcome.text)
            logger.info(f"🤖 AI 응답: {outcome.text[:100]}")
            reply = AIMessage(id=message_id + 1, message=outcome.text, type="ai")
        else:
            logger.error(f"❌ AI 응답 실패 ({outcome.error.code}): {outcome.error.message}")
            reply = AIMessage(id=message_id + 1, message=FALLBACK_REPLY, type="ai_error")

        await self.transport.broadcast(reply)

    async def handle_typing(self, connection_id: str, event: Typing) -> None:
        participant = self.registry.lookup(connection_id)
        if participant is None:
            return
        await self.transport.broadcast_except(
            connection_id, UserTyping(username=participant.username, is_typing=event.is_typing)
        )

    async def handle_disconnect(self, connection_id: str) -> None:
        self._states[connection_id] = ConnectionState.CLOSED
        participant = self.registry.remove(connection_id)
        self.contexts.remove(connection_id)

        if participant is not None:
            logger.info(f"👋 사용자 퇴장: {participant.username} ({connection_id})")
            await self.transport.broadcast_except(connection_id, UserLeft.for_user(participant.username))
        await self.transport.broadcast(UserCount(count=self.registry.size()))

        # 종료된 연결 상태는 더 이상 필요 없음
        self._states.pop(connection_id, None)
