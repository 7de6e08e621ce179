"""
Context Store
연결별로 최근 대화 기록(최대 N턴)을 보관하고 AI 프롬프트용 문자열을 만듭니다.
"""
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Mapping

DEFAULT_MAX_TURNS = 10

# 프롬프트에 표시될 역할 이름
ROLE_LABELS = {
    "user": "User",
    "assistant": "Buddy",
}


@dataclass(frozen=True)
class Turn:
    role: str  # "user" 또는 "assistant"
    content: str


class ConversationContext:
    """최근 대화 턴 목록. 최대 길이를 넘으면 가장 오래된 턴부터 제거 (FIFO)"""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS):
        self.max_turns = max_turns
        self._turns: Deque[Turn] = deque(maxlen=max_turns)

    @classmethod
    def from_history(cls, history: Iterable[Mapping[str, str]], max_turns: int = DEFAULT_MAX_TURNS) -> "ConversationContext":
        """클라이언트가 보낸 [{role, content}, ...] 기록으로 독립된 컨텍스트 생성"""
        context = cls(max_turns)
        for item in history:
            role = item.get("role")
            if role not in ROLE_LABELS:
                continue
            context.append(Turn(role=role, content=item.get("content", "")))
        return context

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def render(self) -> str:
        return "\n".join(f"{ROLE_LABELS[t.role]}: {t.content}" for t in self._turns)

    def turns(self) -> List[Turn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)


class ContextStore:
    """연결 ID별 ConversationContext 저장소"""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS):
        self.max_turns = max_turns
        self._contexts: Dict[str, ConversationContext] = {}

    def append_user(self, connection_id: str, text: str) -> None:
        # 첫 메시지에서 컨텍스트 생성
        context = self._contexts.get(connection_id)
        if context is None:
            context = ConversationContext(self.max_turns)
            self._contexts[connection_id] = context
        context.append(Turn(role="user", content=text))

    def append_assistant(self, connection_id: str, text: str) -> None:
        # 사용자 턴이 한 번도 없었으면 아무것도 하지 않음
        context = self._contexts.get(connection_id)
        if context is not None:
            context.append(Turn(role="assistant", content=text))

    def render(self, connection_id: str) -> str:
        context = self._contexts.get(connection_id)
        return context.render() if context is not None else ""

    def turns(self, connection_id: str) -> List[Turn]:
        context = self._contexts.get(connection_id)
        return context.turns() if context is not None else []

    def remove(self, connection_id: str) -> None:
        self._contexts.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._contexts
