"""Domain layer: pure business logic with zero framework dependencies."""

from trade_kernel.domain.advisor_protocol import (
    AdvisorVerdict,
    CaseFacts,
    NarrativeAdvisor,
)
from trade_kernel.domain.enums import (
    DisputeStatus,
    EscrowStatus,
    TradeStatus,
    Verdict,
)
from trade_kernel.domain.exceptions import (
    IntegrityError,
    InvalidStateError,
    PermissionDeniedError,
    PreconditionNotMetError,
    TradeKernelError,
)
from trade_kernel.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
    TradeStateMachine,
    validate_trade_transition,
)

__all__ = [
    "AdvisorVerdict",
    "CaseFacts",
    "NarrativeAdvisor",
    "DisputeStatus",
    "EscrowStatus",
    "TradeStatus",
    "Verdict",
    "IntegrityError",
    "InvalidStateError",
    "PermissionDeniedError",
    "PreconditionNotMetError",
    "TradeKernelError",
    "DisputeStateMachine",
    "EscrowStateMachine",
    "TradeStateMachine",
    "validate_trade_transition",
]
