"""Bridge orchestration components."""

from typing import TYPE_CHECKING

from .errors import BridgeError
from .models import BridgePurpose, BridgeRoute, BridgeSnapshot, BridgeStatus

if TYPE_CHECKING:  # pragma: no cover
    from .orchestrator import BridgeOrchestrator

__all__ = [
    "BridgeError",
    "BridgeOrchestrator",
    "BridgePurpose",
    "BridgeRoute",
    "BridgeSnapshot",
    "BridgeStatus",
]


def __getattr__(name: str):  # pragma: no cover - simple thunk
    if name == "BridgeOrchestrator":
        from .orchestrator import BridgeOrchestrator as _BridgeOrchestrator

        return _BridgeOrchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
