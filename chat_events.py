"""
Chat 이벤트 정의
WebSocket으로 주고받는 이벤트의 이름과 페이로드 구조 (프레임: {"event": ..., "data": {...}})
"""
import time
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from relay_errors import TransportFault

AI_USERNAME = "AI Assistant"

NonEmptyText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def to_iso(moment: datetime) -> str:
    """UTC 시각을 밀리초 단위 ISO-8601 문자열로 변환 (예: 2024-01-01T00:00:00.000Z)"""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def now_millis() -> int:
    return int(time.time() * 1000)


# ===== 수신 이벤트 (클라이언트 → 서버) =====
class InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: ClassVar[str]


class UserJoin(InboundEvent):
    event_name: ClassVar[str] = "user_join"

    username: NonEmptyText


class ChatMessage(InboundEvent):
    event_name: ClassVar[str] = "message"

    message: NonEmptyText
    # 화면 표시에는 join 때 등록된 이름을 사용하고, 이 값은 호환용으로만 받음
    username: str = ""


class Typing(InboundEvent):
    event_name: ClassVar[str] = "typing"

    is_typing: bool = Field(alias="isTyping")


class Disconnect(InboundEvent):
    """소켓 종료 시 서버 내부에서 생성하는 이벤트"""
    event_name: ClassVar[str] = "disconnect"


INBOUND_EVENTS = {cls.event_name: cls for cls in (UserJoin, ChatMessage, Typing)}


def parse_inbound(frame: Any) -> InboundEvent:
    """
    수신 프레임을 검증하고 해당 이벤트 모델로 변환

    Raises:
        TransportFault: 프레임 형식이 잘못되었거나 알 수 없는 이벤트
    """
    if not isinstance(frame, dict):
        raise TransportFault("frame must be a JSON object", code="invalid_frame")

    name = frame.get("event")
    event_cls = INBOUND_EVENTS.get(name) if isinstance(name, str) else None
    if event_cls is None:
        raise TransportFault(f"unknown event: {name!r}", code="unknown_event")

    data = frame.get("data") or {}
    try:
        return event_cls.model_validate(data)
    except ValidationError as e:
        raise TransportFault(f"invalid payload for {name}: {e.errors()}", code="invalid_payload") from e


# ===== 송신 이벤트 (서버 → 클라이언트) =====
class OutboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: ClassVar[str]

    def to_frame(self) -> Dict[str, Any]:
        return {"event": self.event_name, "data": self.model_dump(by_alias=True)}


class UserJoined(OutboundEvent):
    event_name: ClassVar[str] = "user_joined"

    username: str
    message: str
    timestamp: str = Field(default_factory=now_iso)

    @classmethod
    def for_user(cls, username: str) -> "UserJoined":
        return cls(username=username, message=f"{username} joined the chat")


class UserMessage(OutboundEvent):
    event_name: ClassVar[str] = "user_message"

    id: int
    username: str
    message: str
    timestamp: str = Field(default_factory=now_iso)
    type: Literal["user"] = "user"


class AIMessage(OutboundEvent):
    event_name: ClassVar[str] = "ai_message"

    id: int
    username: str = AI_USERNAME
    message: str
    timestamp: str = Field(default_factory=now_iso)
    type: Literal["ai", "ai_error"] = "ai"


class UserLeft(OutboundEvent):
    event_name: ClassVar[str] = "user_left"

    username: str
    message: str
    timestamp: str = Field(default_factory=now_iso)

    @classmethod
    def for_user(cls, username: str) -> "UserLeft":
        return cls(username=username, message=f"{username} left the chat")


class UserCount(OutboundEvent):
    event_name: ClassVar[str] = "user_count"

    count: int


class UserTyping(OutboundEvent):
    event_name: ClassVar[str] = "user_typing"

    username: str
    is_typing: bool = Field(alias="isTyping")


class ErrorEvent(OutboundEvent):
    event_name: ClassVar[str] = "error"

    message: str


OutboundEventType = Union[UserJoined, UserMessage, AIMessage, UserLeft, UserCount, UserTyping, ErrorEvent]
