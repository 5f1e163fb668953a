"""Route conversation transcripts to ACP agents and stream normalized progress."""

from acp_relay.broadcast import SessionUpdateChannel, Subscription  # noqa: F401
from acp_relay.config import RelayConfig, load_config  # noqa: F401
from acp_relay.events import (  # noqa: F401
    ContentBlock,
    SessionUpdateEvent,
    TextBlock,
    TokenUsage,
    ToolResponseStats,
    ToolUseBlock,
)
from acp_relay.history import JsonConversationLoader, load_history  # noqa: F401
from acp_relay.models import (  # noqa: F401
    AgentSessionInfo,
    ConversationMessage,
    ExecutionStats,
    ProgressStep,
    ProgressUpdate,
    PromptResult,
    StreamingContent,
    TranscriptOptions,
    TranscriptResult,
)
from acp_relay.orchestrator import (  # noqa: F401
    RelayError,
    RouterState,
    SessionEstablishmentError,
    TranscriptRouter,
    create_router,
)
from acp_relay.progress import ProgressAggregator, aggregate_event  # noqa: F401
from acp_relay.session_registry import Session, SessionRegistry  # noqa: F401
from acp_relay.sink import ProgressSink  # noqa: F401
from acp_relay.transport import (  # noqa: F401
    AcpSessionTransport,
    PermissionRequest,
    RelayClient,
    SessionTransport,
)

__all__ = [
    "AcpSessionTransport",
    "AgentSessionInfo",
    "ContentBlock",
    "ConversationMessage",
    "ExecutionStats",
    "JsonConversationLoader",
    "PermissionRequest",
    "ProgressAggregator",
    "ProgressSink",
    "ProgressStep",
    "ProgressUpdate",
    "PromptResult",
    "RelayClient",
    "RelayConfig",
    "RelayError",
    "RouterState",
    "Session",
    "SessionEstablishmentError",
    "SessionRegistry",
    "SessionTransport",
    "SessionUpdateChannel",
    "SessionUpdateEvent",
    "StreamingContent",
    "Subscription",
    "TextBlock",
    "TokenUsage",
    "ToolResponseStats",
    "ToolUseBlock",
    "TranscriptOptions",
    "TranscriptResult",
    "TranscriptRouter",
    "aggregate_event",
    "create_router",
    "load_config",
    "load_history",
]
