"""Session registry and run ledger records."""

from .loader import RecordLoadError, RunLedger, SessionRegistry, parse_sessions_index
from .models import RunSignal, SessionRecord, SubagentRunRecord, classify_status_tokens

__all__ = [
    "RecordLoadError",
    "RunLedger",
    "RunSignal",
    "SessionRecord",
    "SessionRegistry",
    "SubagentRunRecord",
    "classify_status_tokens",
    "parse_sessions_index",
]
