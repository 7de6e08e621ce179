"""
AI Response Gateway
외부 텍스트 생성 서비스 호출을 감싸고, 실패를 GenerationError 결과로 변환합니다.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from openai import AsyncOpenAI

from relay_config import RelaySettings
from relay_errors import GenerationError

logger = logging.getLogger(__name__)

# generate(prompt) -> 생성된 텍스트
Generator = Callable[[str], Awaitable[str]]

# 고정 페르소나 프롬프트 (사용자가 변경할 수 없음)
PERSONA_PREAMBLE = (
    "You are Buddy, a friendly AI assistant hanging out in a group chat room. "
    "Respond in a casual, warm, conversational register. "
    "Keep replies concise (1-2 sentences) and engaging. "
    "Never ask the user a question back."
)

FALLBACK_REPLY = "Sorry, I encountered an error while processing your message. Please try again."


@dataclass(frozen=True)
class GenerationOutcome:
    """생성 결과: 성공이면 text, 실패면 error"""
    text: Optional[str] = None
    error: Optional[GenerationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, text: str) -> "GenerationOutcome":
        return cls(text=text)

    @classmethod
    def failure(cls, error: GenerationError) -> "GenerationOutcome":
        return cls(error=error)


class OpenAIGenerator:
    """OpenAI 호환 Chat Completions API(VLLM 등)로 텍스트를 생성"""

    def __init__(self, settings: RelaySettings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.llm_model
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.llm_temperature
        self.client = client or AsyncOpenAI(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
        )

    async def __call__(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return response.choices[0].message.content


def build_prompt(prompt_context: str, latest_user_text: str) -> str:
    """페르소나 + 최근 대화 + 최신 메시지를 하나의 프롬프트로 합침"""
    sections = [PERSONA_PREAMBLE]
    if prompt_context:
        sections.append(f"Recent conversation:\n{prompt_context}")
    sections.append(f'Reply to the latest message: "{latest_user_text}"')
    return "\n\n".join(sections)


class AIResponseGateway:
    """
    생성 백엔드를 한 번 호출하고 결과를 GenerationOutcome으로 반환
    재시도 없음, 호출 사이에 상태를 보관하지 않음
    """

    def __init__(self, generate: Generator, timeout: Optional[float] = None):
        self._generate = generate
        self.timeout = timeout

    async def respond(self, prompt_context: str, latest_user_text: str) -> GenerationOutcome:
        prompt = build_prompt(prompt_context, latest_user_text)
        try:
            if self.timeout is not None:
                text = await asyncio.wait_for(self._generate(prompt), timeout=self.timeout)
            else:
                text = await self._generate(prompt)
        except asyncio.TimeoutError:
            logger.error(f"❌ AI 응답 생성 시간 초과 ({self.timeout}초)")
            return GenerationOutcome.failure(
                GenerationError(f"generation timed out after {self.timeout}s", code="timeout")
            )
        except Exception as e:
            logger.error(f"❌ AI 응답 생성 오류: {str(e)}")
            return GenerationOutcome.failure(GenerationError(str(e) or type(e).__name__))

        if not isinstance(text, str) or not text.strip():
            logger.error("❌ AI 응답이 비어 있습니다")
            return GenerationOutcome.failure(GenerationError("empty response", code="empty_response"))

        return GenerationOutcome.success(text.strip())
