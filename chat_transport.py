"""
Connection Transport
WebSocket 연결 관리, 개별/전체/발신자 제외 전송, 연결별 순차 처리 큐
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from fastapi import WebSocket

from chat_events import InboundEvent, OutboundEvent
from relay_errors import TransportFault

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Broadcast Coordinator가 이벤트를 내보낼 때 사용하는 인터페이스"""

    async def send(self, connection_id: str, event: OutboundEvent) -> None: ...

    async def broadcast(self, event: OutboundEvent) -> None: ...

    async def broadcast_except(self, connection_id: str, event: OutboundEvent) -> None: ...


class WebSocketHub:
    """현재 열려 있는 WebSocket 연결 목록 (단일 프로세스 메모리)"""

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[connection_id] = websocket
        logger.info(f"🔌 연결 수락: {connection_id} (열린 연결 {len(self._connections)}개)")

    def disconnect(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.info(f"🔌 연결 종료: {connection_id} (열린 연결 {len(self._connections)}개)")

    def connection_ids(self) -> List[str]:
        return list(self._connections)

    async def send(self, connection_id: str, event: OutboundEvent) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            return
        await self._send_safe(connection_id, websocket, event.to_frame())

    async def broadcast(self, event: OutboundEvent) -> None:
        await self._fan_out(event, exclude=None)

    async def broadcast_except(self, connection_id: str, event: OutboundEvent) -> None:
        await self._fan_out(event, exclude=connection_id)

    async def _fan_out(self, event: OutboundEvent, exclude: Optional[str]) -> None:
        frame = event.to_frame()
        # 전송 도중 연결이 끊길 수 있으므로 복사본으로 순회
        targets = [(cid, ws) for cid, ws in self._connections.items() if cid != exclude]
        for cid, ws in targets:
            await self._send_safe(cid, ws, frame)

    async def _send_safe(self, connection_id: str, websocket: WebSocket, frame: dict) -> None:
        try:
            await websocket.send_json(frame)
        except Exception as e:
            # 끊어진 소켓은 목록에서 제거하고 나머지 전송은 계속
            logger.warning(f"⚠️  {connection_id} 전송 실패, 연결 제거: {str(e)}")
            self._connections.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._connections)


EventHandler = Callable[[str, InboundEvent], Awaitable[None]]

_STOP = object()


class ConnectionMailbox:
    """
    한 연결의 수신 이벤트를 도착 순서대로 하나씩 처리하는 큐

    수신 루프는 put()으로 이벤트를 넣기만 하고, 워커 태스크가 이전 이벤트
    처리(AI 응답 대기 포함)가 끝난 뒤에 다음 이벤트를 꺼냅니다.
    """

    def __init__(self, connection_id: str, handler: EventHandler, max_pending: Optional[int] = None):
        self.connection_id = connection_id
        self._handler = handler
        self.max_pending = max_pending
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name=f"mailbox-{self.connection_id}")

    def put(self, event: InboundEvent) -> None:
        """
        이벤트를 처리 대기열에 추가

        Raises:
            TransportFault: 대기 중인 이벤트가 max_pending개 이상인 경우
        """
        if self.max_pending is not None and self._queue.qsize() >= self.max_pending:
            raise TransportFault(
                f"{self.connection_id} 대기 이벤트가 {self.max_pending}개를 넘었습니다",
                code="mailbox_full",
            )
        self._queue.put_nowait(event)

    async def close(self, final_event: Optional[InboundEvent] = None) -> None:
        """남은 이벤트(및 final_event)를 모두 처리한 뒤 워커 종료 (max_pending 제한 없음)"""
        if final_event is not None:
            self._queue.put_nowait(final_event)
        self._queue.put_nowait(_STOP)
        if self._worker is not None:
            # 수신 루프가 취소되어도 퇴장 처리는 끝까지 진행
            await asyncio.shield(self._worker)

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            try:
                await self._handler(self.connection_id, item)
            except Exception:
                logger.exception(f"❌ {self.connection_id} 이벤트 처리 중 처리되지 않은 오류")
