"""Shared test fixtures."""

from pathlib import Path

import pytest

from firezap.adapters.credential_store import FileCredentialStore
from firezap.config import Settings
from firezap.containers import AppContainer
from firezap.services.broadcaster import EventBroadcaster
from firezap.services.registry import SessionRegistry
from firezap.services.sessions import ReconnectPolicy, Session
from tests.fakes import FakeTransportFactory


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        auth_data_path=str(tmp_path / "auth"),
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        reconnect_max_attempts=3,
        subscriber_send_timeout=1.0,
    )


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def credentials(settings: Settings) -> FileCredentialStore:
    return FileCredentialStore(Path(settings.auth_data_path))


@pytest.fixture
def broadcaster(settings: Settings) -> EventBroadcaster:
    return EventBroadcaster(send_timeout=settings.subscriber_send_timeout)


@pytest.fixture
def container(
    settings: Settings,
    transport_factory: FakeTransportFactory,
    credentials: FileCredentialStore,
    broadcaster: EventBroadcaster,
) -> AppContainer:
    policy = ReconnectPolicy(
        base_delay=settings.reconnect_base_delay,
        max_delay=settings.reconnect_max_delay,
        max_attempts=settings.reconnect_max_attempts,
    )

    def session_factory(session_id: str) -> Session:
        return Session(
            session_id=session_id,
            transport_factory=transport_factory,
            publisher=broadcaster,
            credentials=credentials,
            policy=policy,
        )

    registry = SessionRegistry(session_factory)

    async def close_resources() -> None:
        await registry.close()

    return AppContainer(
        settings=settings,
        registry=registry,
        broadcaster=broadcaster,
        credentials=credentials,
        chip_status_service=None,
        close_resources=close_resources,
    )
