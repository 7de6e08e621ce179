"""
Chat Relay 설정
환경 변수와 .env 파일에서 서버 설정을 읽어옵니다 (pydantic-settings).
"""
import logging
from typing import Annotated, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from relay_errors import ConfigurationError


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    # 서버 바인딩
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, ge=1, le=65535, alias="PORT")

    # OpenAI 호환 생성 백엔드 (VLLM 등)
    llm_api_key: str = Field(min_length=1, alias="LLM_API_KEY")
    llm_base_url: str = Field(default="http://localhost:8000/v1", alias="LLM_BASE_URL")
    llm_model: str = Field(default="openai/gpt-oss-20b", alias="LLM_MODEL")
    llm_max_tokens: int = Field(default=512, gt=0, alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0, alias="LLM_TEMPERATURE")
    llm_timeout_seconds: float = Field(default=30.0, gt=0, alias="LLM_TIMEOUT_SECONDS")

    # 대화 컨텍스트 최대 턴 수
    context_max_turns: int = Field(default=10, gt=0, alias="CONTEXT_MAX_TURNS")
    # 연결당 처리 대기 가능한 이벤트 수
    mailbox_max_pending: int = Field(default=32, gt=0, alias="MAILBOX_MAX_PENDING")

    # 쉼표로 구분된 목록 (예: "http://a.example,http://b.example")
    cors_origins: Annotated[List[str], NoDecode] = Field(default=["*"], alias="CORS_ORIGINS")
    static_dir: str = Field(default="public", alias="STATIC_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def load_settings(env_file: Optional[str] = ".env") -> RelaySettings:
    """
    환경 변수(.env 포함)로부터 설정 객체를 생성

    Args:
        env_file: 읽어올 .env 파일 경로 (None이면 환경 변수만 사용)

    Returns:
        RelaySettings: 검증된 설정

    Raises:
        ConfigurationError: LLM_API_KEY 누락 또는 잘못된 값
    """
    try:
        return RelaySettings(_env_file=env_file)
    except ValidationError as e:
        for error in e.errors():
            if error["loc"] and error["loc"][0] in ("LLM_API_KEY", "llm_api_key"):
                raise ConfigurationError(
                    "LLM_API_KEY environment variable is required",
                    code="missing_api_key",
                ) from e
        raise ConfigurationError(f"잘못된 설정값: {e}", code="invalid_setting") from e


def configure_logging(level: str = "INFO") -> None:
    """루트 로거 설정 (콘솔 출력)"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
