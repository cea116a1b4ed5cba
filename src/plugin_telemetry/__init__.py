"""Plugin Telemetry - consent-gated usage telemetry for hosted plugins.

This package lets a plugin report lightweight usage events (activation,
setup, feature usage, key usage indicators) to a single analytics endpoint,
only after the user opted in, and with a durable outbox so that network
failures do not lose events.

Features:
- Opt-in consent gate in front of every send path
- Durable SQL outbox with at-least-once delivery
- One-shot lifecycle events (setup, first strike) and KUI counters
- PII scrubbing of event properties
- OpenPanel (HTTP) and Sentry/GlitchTip delivery adapters

Quick Start:
    from plugin_telemetry import JsonFileSettingsStore, TelemetryClient, ThreadingScheduler, load_config

    telemetry = TelemetryClient(
        load_config(
            api_key="op_xxx",
            api_secret="sec_xxx",
            plugin_name="Creator LMS",
            plugin_slug="creator-lms",
            plugin_version="1.2.3",
            site_url="https://example.com",
        ),
        settings=JsonFileSettingsStore("/var/lib/creator-lms/settings.json"),
        scheduler=ThreadingScheduler(),
    )

    # Once the user accepts the consent prompt
    telemetry.grant_consent()

    # Queue events; the scheduler flushes them periodically
    telemetry.track("course_created", {"course_type": "video"})
    telemetry.track_setup()
    telemetry.track_kui("order_received")

Opt-out:
    # Environment variable opt-out
    export DO_NOT_TRACK=1
    # Or
    export PLUGIN_TELEMETRY_ENABLED=false
"""

from plugin_telemetry.adapters import (
    Credentials,
    DeliveryAdapter,
    DeliveryResult,
    ErrorDetail,
    OpenPanelAdapter,
    SentryAdapter,
)
from plugin_telemetry.client import TelemetryClient
from plugin_telemetry.config import (
    CONFIG_DIR,
    CONFIG_FILE,
    DEFAULTS,
    ConfigurationError,
    ReportInterval,
    TelemetryConfig,
    load_config,
    save_config,
)
from plugin_telemetry.consent import ConsentGate
from plugin_telemetry.decorators import track_feature
from plugin_telemetry.dispatcher import Dispatcher, FlushResult
from plugin_telemetry.events import (
    EventName,
    Identity,
    PayloadBuilder,
    generate_profile_id,
)
from plugin_telemetry.ledger import OneShotLedger
from plugin_telemetry.outbox import Outbox, QueuedEvent
from plugin_telemetry.privacy import (
    PII_DENYLIST,
    is_sensitive_key,
    scrub_dict,
    scrub_list,
    scrub_string,
)
from plugin_telemetry.scheduler import Scheduler, ThreadingScheduler
from plugin_telemetry.settings import (
    InMemorySettingsStore,
    JsonFileSettingsStore,
    SettingsStore,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Client
    "TelemetryClient",
    # Config
    "TelemetryConfig",
    "ReportInterval",
    "ConfigurationError",
    "load_config",
    "save_config",
    "CONFIG_DIR",
    "CONFIG_FILE",
    "DEFAULTS",
    # Components
    "ConsentGate",
    "Outbox",
    "QueuedEvent",
    "Dispatcher",
    "FlushResult",
    "OneShotLedger",
    # Adapters
    "DeliveryAdapter",
    "DeliveryResult",
    "ErrorDetail",
    "Credentials",
    "OpenPanelAdapter",
    "SentryAdapter",
    # Events
    "EventName",
    "Identity",
    "PayloadBuilder",
    "generate_profile_id",
    # Privacy
    "scrub_dict",
    "scrub_list",
    "scrub_string",
    "is_sensitive_key",
    "PII_DENYLIST",
    # Decorators
    "track_feature",
    # Host collaborators
    "SettingsStore",
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
    "Scheduler",
    "ThreadingScheduler",
]
