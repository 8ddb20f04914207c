"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from firezap.adapters.credential_store import FileCredentialStore
from firezap.adapters.inprocess_transport import (
    InProcessTransport,
    MessagingClientFactory,
)
from firezap.adapters.process_transport import ProcessTransport
from firezap.adapters.supabase_chip_repository import SupabaseChipRepository
from firezap.adapters.transport import Transport, TransportFactory
from firezap.config import Settings, build_process_argv
from firezap.services.broadcaster import EventBroadcaster
from firezap.services.chips import ChipStatusService
from firezap.services.registry import SessionRegistry
from firezap.services.sessions import CredentialStore, ReconnectPolicy, Session


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    registry: SessionRegistry
    broadcaster: EventBroadcaster
    credentials: CredentialStore
    chip_status_service: ChipStatusService | None
    close_resources: Callable[[], Awaitable[None]]


def build_transport_factory(
    settings: Settings,
    credentials: FileCredentialStore,
    client_factory: MessagingClientFactory | None = None,
) -> TransportFactory:
    """Select the transport implementation configured for this deployment."""
    if settings.transport_kind == "inprocess":
        if client_factory is None:
            raise ValueError("The in-process transport requires a client factory.")

        def inprocess_transport(session_id: str) -> Transport:
            client = client_factory(session_id, credentials.root)
            return InProcessTransport(session_id=session_id, client=client)

        return inprocess_transport

    workdir = Path(settings.process_workdir) if settings.process_workdir else None

    def process_transport(session_id: str) -> Transport:
        argv = build_process_argv(
            settings.process_command,
            session_id,
            str(credentials.root),
        )
        return ProcessTransport(
            session_id=session_id,
            argv=argv,
            workdir=workdir,
            stop_timeout=settings.process_stop_timeout,
        )

    return process_transport


def build_container(
    settings: Settings | None = None,
    client_factory: MessagingClientFactory | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    credentials = FileCredentialStore(Path(resolved_settings.auth_data_path).resolve())
    broadcaster = EventBroadcaster(
        send_timeout=resolved_settings.subscriber_send_timeout
    )
    chip_status_service = None
    if resolved_settings.supabase_url and resolved_settings.supabase_service_key:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_service_key
        )
        chip_status_service = ChipStatusService(SupabaseChipRepository(supabase_client))
        broadcaster.add_listener(chip_status_service.on_event)

    transport_factory = build_transport_factory(
        resolved_settings, credentials, client_factory
    )
    policy = ReconnectPolicy(
        base_delay=resolved_settings.reconnect_base_delay,
        max_delay=resolved_settings.reconnect_max_delay,
        max_attempts=resolved_settings.reconnect_max_attempts,
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
        settings=resolved_settings,
        registry=registry,
        broadcaster=broadcaster,
        credentials=credentials,
        chip_status_service=chip_status_service,
        close_resources=close_resources,
    )
