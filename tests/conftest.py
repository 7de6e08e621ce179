from __future__ import annotations

import asyncio
import os
import socket
from typing import Any

import pytest

from ai_gateway import AIResponseGateway
from broadcast_coordinator import BroadcastCoordinator
from context_store import ContextStore
from relay_config import RelaySettings


class NetworkBlockedError(RuntimeError):
    pass


def _blocked(*_args: Any, **_kwargs: Any) -> Any:
    raise NetworkBlockedError("Network access is disabled during tests. Set ALLOW_NETWORK=1 to enable.")


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent accidental calls to a real generation backend."""

    if os.getenv("ALLOW_NETWORK") == "1":
        return

    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket, "getaddrinfo", _blocked)


class RecordingTransport:
    """Collects outbound events as (target, event) pairs.

    target is "all", ("except", connection_id) or ("to", connection_id).
    """

    def __init__(self) -> None:
        self.sent: list[tuple[Any, Any]] = []

    async def send(self, connection_id, event) -> None:
        self.sent.append((("to", connection_id), event))

    async def broadcast(self, event) -> None:
        self.sent.append(("all", event))

    async def broadcast_except(self, connection_id, event) -> None:
        self.sent.append((("except", connection_id), event))

    def names(self) -> list[str]:
        return [event.event_name for _, event in self.sent]

    def of(self, name: str) -> list[tuple[Any, Any]]:
        return [(target, event) for target, event in self.sent if event.event_name == name]

    def clear(self) -> None:
        self.sent.clear()


class FakeGenerator:
    def __init__(self, reply: str = "Sounds great!", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def coordinator(transport: RecordingTransport, generator: FakeGenerator) -> BroadcastCoordinator:
    return BroadcastCoordinator(
        transport=transport,
        gateway=AIResponseGateway(generator, timeout=1.0),
        contexts=ContextStore(max_turns=10),
    )


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(llm_api_key="test-key", static_dir="does-not-exist", _env_file=None)
