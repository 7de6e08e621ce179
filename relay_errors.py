"""
Chat Relay 예외 정의
채팅 릴레이 서버에서 사용하는 예외 계층
"""
from typing import Optional


class RelayError(Exception):
    """릴레이 서버 예외의 기본 클래스"""

    default_code: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None):
        self.message = message
        self.code = code if code is not None else self.default_code
        super().__init__(message)


class IdentityNotFound(RelayError):
    """join 하지 않은 연결에서 메시지가 들어온 경우"""

    default_code = "identity_not_found"

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"연결 {connection_id}에 등록된 사용자가 없습니다")


class GenerationError(RelayError):
    """AI 응답 생성 실패 (타임아웃, 서비스 오류, 빈 응답 등)"""

    default_code = "generation_failed"


class ConfigurationError(RelayError):
    """필수 설정 누락 또는 잘못된 설정값 (서버 시작 불가)"""

    default_code = "configuration_error"


class TransportFault(RelayError):
    """이벤트 처리 중 발생한 예기치 못한 오류 또는 잘못된 프레임"""

    default_code = "transport_fault"
