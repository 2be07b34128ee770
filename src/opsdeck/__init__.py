"""
Top-level package for opsdeck, the real-time job event pipeline of the Ops
Deck dashboard.

Environment variables are loaded from the nearest `.env` so ``OPSDECK_*``
settings apply without extra wiring.
"""
from dotenv import find_dotenv, load_dotenv

# Keep side effect so OPSDECK_* settings are picked up on import.
_ = load_dotenv(find_dotenv(), override=False)

from .api import OpsDeckApi
from .cache import JobCache
from .config import (
    JobCacheConfig,
    PollingConfig,
    PreferenceStore,
    ServerConfig,
    Settings,
    StoreConfig,
    StreamConfig,
    TransportConfig,
    configure,
    get_settings,
    load_env,
)
from .errors import (
    ApiError,
    ApiErrorKind,
    ConflictError,
    MalformedEventError,
    NetworkError,
    NotConfiguredError,
    OpsDeckError,
    TimeoutError_,
)
from .events import JobEvent, JobEventType, StreamDataType, StreamMessage
from .logging import configure_logging, get_logger
from .models import (
    Issue,
    IssueStatus,
    Job,
    JobConfidence,
    JobCost,
    JobDecision,
    JobStatus,
    WorkflowPhase,
    parse_status_response,
)
from .poller import PollingScheduler
from .pubsub import Broadcaster
from .store import JobStore
from .stream import ConnectionState, EventStreamConnection, JobLogStream
from .sync import JobSync
from .transport import TransportClient

__all__ = [
    # Pipeline
    "JobSync",
    "TransportClient",
    "OpsDeckApi",
    "EventStreamConnection",
    "JobLogStream",
    "ConnectionState",
    "JobStore",
    "JobCache",
    "PollingScheduler",
    "Broadcaster",
    # Models
    "Job",
    "JobCost",
    "JobDecision",
    "JobConfidence",
    "JobStatus",
    "Issue",
    "IssueStatus",
    "WorkflowPhase",
    "JobEvent",
    "JobEventType",
    "StreamMessage",
    "StreamDataType",
    "parse_status_response",
    # Config
    "Settings",
    "ServerConfig",
    "PreferenceStore",
    "TransportConfig",
    "StreamConfig",
    "PollingConfig",
    "StoreConfig",
    "JobCacheConfig",
    "get_settings",
    "configure",
    "load_env",
    # Errors
    "OpsDeckError",
    "ApiError",
    "ApiErrorKind",
    "NotConfiguredError",
    "NetworkError",
    "TimeoutError_",
    "ConflictError",
    "MalformedEventError",
    # Logging
    "get_logger",
    "configure_logging",
]
