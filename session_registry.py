"""
Session Registry
연결 ID → 참가자(사용자 이름, 입장 시각) 매핑을 관리합니다.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from relay_errors import IdentityNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    """접속 중인 채팅 사용자 (생성 후 변경 불가)"""
    connection_id: str
    username: str
    join_time: datetime


class SessionRegistry:
    """접속한 참가자 목록. 크기가 곧 user_count 값이 됩니다."""

    def __init__(self):
        self._participants: Dict[str, Participant] = {}

    def join(self, connection_id: str, username: str) -> Participant:
        # 같은 연결 ID로 다시 join 하면 기존 항목을 교체
        participant = Participant(
            connection_id=connection_id,
            username=username,
            join_time=datetime.now(timezone.utc),
        )
        self._participants.pop(connection_id, None)
        self._participants[connection_id] = participant
        logger.debug(f"참가자 등록: {username} ({connection_id})")
        return participant

    def lookup(self, connection_id: str) -> Optional[Participant]:
        return self._participants.get(connection_id)

    def require(self, connection_id: str) -> Participant:
        participant = self._participants.get(connection_id)
        if participant is None:
            raise IdentityNotFound(connection_id)
        return participant

    def remove(self, connection_id: str) -> Optional[Participant]:
        """참가자를 제거하고 반환. 없으면 None (두 번 호출해도 안전)"""
        return self._participants.pop(connection_id, None)

    def size(self) -> int:
        return len(self._participants)

    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._participants
