"""Pytest configuration and fixtures for telemetry tests."""

import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest
from sqlalchemy import create_engine

from plugin_telemetry.adapters import Credentials, DeliveryResult
from plugin_telemetry.client import TelemetryClient
from plugin_telemetry.config import TelemetryConfig
from plugin_telemetry.outbox import Outbox
from plugin_telemetry.settings import InMemorySettingsStore

SLUG = "creator-lms"


class RecordingAdapter:
    """Delivery adapter fake that records every send.

    ``fail_when`` decides per call (event name, properties, call index)
    whether the delivery fails.
    """

    def __init__(self, fail_when: Optional[Callable[[str, Mapping[str, Any], int], bool]] = None) -> None:
        self.fail_when = fail_when
        self.credentials: Optional[Credentials] = None
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def configure(self, credentials: Credentials) -> None:
        self.credentials = credentials

    def send(self, event_name: str, properties: Mapping[str, Any]) -> DeliveryResult:
        index = len(self.calls)
        self.calls.append((event_name, dict(properties)))
        if self.fail_when is not None and self.fail_when(event_name, properties, index):
            return DeliveryResult.failed("HTTP 503: Service Unavailable", status_code=503)
        return DeliveryResult.ok()

    @property
    def event_names(self) -> List[str]:
        return [name for name, _ in self.calls]


class ManualScheduler:
    """Scheduler fake; ticks are triggered by the test."""

    def __init__(self) -> None:
        self.tasks: Dict[str, Tuple[float, Callable[[], None]]] = {}

    def register(self, name: str, interval_seconds: float, callback: Callable[[], None]) -> None:
        self.tasks.setdefault(name, (interval_seconds, callback))

    def unregister(self, name: str) -> None:
        self.tasks.pop(name, None)

    def is_registered(self, name: str) -> bool:
        return name in self.tasks

    def tick(self, name: str) -> Any:
        return self.tasks[name][1]()


@pytest.fixture
def clean_env():
    """Provide a clean environment without telemetry-related variables."""
    env_vars_to_clear = [
        "DO_NOT_TRACK",
        "PLUGIN_TELEMETRY_ENABLED",
        "PLUGIN_TELEMETRY_API_KEY",
        "PLUGIN_TELEMETRY_API_SECRET",
        "PLUGIN_TELEMETRY_ENDPOINT",
        "PLUGIN_TELEMETRY_DATABASE_URL",
        "PLUGIN_TELEMETRY_REPORT_INTERVAL",
        "PLUGIN_TELEMETRY_TIMEOUT",
    ]

    # Store original values
    original = {var: os.environ.get(var) for var in env_vars_to_clear}

    # Clear the variables
    for var in env_vars_to_clear:
        if var in os.environ:
            del os.environ[var]

    yield

    # Restore original values
    for var, value in original.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]


@pytest.fixture
def settings():
    return InMemorySettingsStore()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def outbox(engine):
    box = Outbox(engine, SLUG)
    box.create_table()
    return box


@pytest.fixture
def adapter():
    return RecordingAdapter()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def config(tmp_path):
    return TelemetryConfig(
        api_key="op_test",
        api_secret="sec_test",
        plugin_name="Creator LMS",
        plugin_slug=SLUG,
        plugin_version="1.2.3",
        site_url="https://x.test",
        database_url=f"sqlite:///{tmp_path / 'queue.db'}",
    )


@pytest.fixture
def make_client(config, settings, adapter, outbox, scheduler):
    """Build clients over the shared store, outbox and fakes."""

    def factory(**kwargs: Any) -> TelemetryClient:
        params = dict(
            config=config,
            settings=settings,
            adapter=adapter,
            outbox=outbox,
            scheduler=scheduler,
        )
        params.update(kwargs)
        return TelemetryClient(**params)

    return factory


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def opted_in_client(client):
    client.grant_consent()
    return client
