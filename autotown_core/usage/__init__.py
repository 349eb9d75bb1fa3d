from autotown_core.usage.identity import (
    normalize_board_name,
    resolve_identity,
)
from autotown_core.usage.types import (
    BoardSighting,
    FoundController,
    GitLabel,
    RawUsageRecord,
    ReportContext,
    RolloutWorkItem,
    TuneResult,
)

__all__ = [
    "BoardSighting",
    "FoundController",
    "GitLabel",
    "RawUsageRecord",
    "ReportContext",
    "RolloutWorkItem",
    "TuneResult",
    "normalize_board_name",
    "resolve_identity",
]
