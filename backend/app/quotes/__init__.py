"""Quote distribution subsystem for the portfolio dashboard.

Public API:
    Quote               - Immutable normalized quote dataclass
    QuoteUpdate         - Realtime quote pushed to subscribers
    QuoteCache          - Thread-safe TTL quote store
    QuoteProvider       - Abstract interface for upstream providers
    ProviderRegistry    - Configured providers and fallback order
    QuoteFetcher        - Cached quote lookup with provider failover
    UsageRecorder       - Per-call usage records and aggregates
    RealtimeBroker      - Upstream feed state machine and fan-out
    ChannelHub          - Per-client push channels
    QuoteSettings       - Environment-driven settings
    create_quote_context - Factory that wires everything together
    create_quote_router  - FastAPI router factory for REST endpoints
    create_stream_router - FastAPI router factory for the SSE endpoint
"""

from .api import create_quote_router
from .broker import BackoffPolicy, BrokerState, RealtimeBroker
from .cache import QuoteCache
from .channels import ChannelHub
from .config import QuoteSettings
from .factory import QuoteContext, create_quote_context
from .fetcher import QuoteFetcher
from .interface import QuoteProvider, UpstreamFeed
from .models import Quote, QuoteUpdate, SearchResult, UsageRecord
from .registry import ProviderRegistry
from .stream import create_stream_router
from .usage import UsageRecorder

__all__ = [
    "Quote",
    "QuoteUpdate",
    "SearchResult",
    "UsageRecord",
    "QuoteCache",
    "QuoteProvider",
    "UpstreamFeed",
    "ProviderRegistry",
    "QuoteFetcher",
    "UsageRecorder",
    "RealtimeBroker",
    "BrokerState",
    "BackoffPolicy",
    "ChannelHub",
    "QuoteSettings",
    "QuoteContext",
    "create_quote_context",
    "create_quote_router",
    "create_stream_router",
]
