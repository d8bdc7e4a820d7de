"""mms featureflag library."""

from .config import FeatureFlagConfig
from .engine import AssignmentEngine
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes, TelemetryDeliveryError
from .hasher import BUCKET_COUNT, Hasher, MurmurHasher, murmur3_32
from .loader import configure_logging, load, load_registry
from .logger import new_logger
from .memory import InMemoryEventSink
from .models import (
    INTERNAL_SEGMENT,
    Assignment,
    AssignmentKind,
    AssignmentSource,
    ExperimentDefinition,
    FlagDefinition,
    RolloutStage,
    TelemetryEvent,
    TelemetryEventType,
    UserContext,
)
from .override import OverrideResolver, overrides_from_env, parse_overrides
from .registry import Registry
from .retry import RetryConfig, RetryError, with_retry
from .rollout import RolloutPolicy
from .sink import EventSink, HttpEventSink, HttpSinkConfig
from .telemetry import EmitterConfig, TelemetryEmitter
from .variant import VariantSelector, cumulative_boundaries

__all__ = [
    "Assignment",
    "AssignmentEngine",
    "AssignmentKind",
    "AssignmentSource",
    "BUCKET_COUNT",
    "EmitterConfig",
    "EventSink",
    "ExperimentDefinition",
    "FeatureFlagConfig",
    "FeatureFlagError",
    "FeatureFlagErrorCodes",
    "FlagDefinition",
    "Hasher",
    "HttpEventSink",
    "HttpSinkConfig",
    "INTERNAL_SEGMENT",
    "InMemoryEventSink",
    "MurmurHasher",
    "OverrideResolver",
    "Registry",
    "RetryConfig",
    "RetryError",
    "RolloutPolicy",
    "RolloutStage",
    "TelemetryDeliveryError",
    "TelemetryEmitter",
    "TelemetryEvent",
    "TelemetryEventType",
    "UserContext",
    "VariantSelector",
    "configure_logging",
    "cumulative_boundaries",
    "load",
    "load_registry",
    "murmur3_32",
    "new_logger",
    "overrides_from_env",
    "parse_overrides",
    "with_retry",
]
