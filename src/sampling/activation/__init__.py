"""Display activation -- validation, state transitions, commit and side effects.

Provides:
- ActivationOrchestrator: end-to-end activation flow
- ActivationRepository / SqlActivationRepository: persistence seam
- EffectRunner / plan_effects: isolated post-commit side effects
- plan_activation / resolve_brand / guard_activation: pure transition logic
- validate_activation_request: field-level request validation
"""

from src.sampling.activation.effects import (
    CrmTagSyncEffect,
    EffectRunner,
    NotificationEffect,
    SetupCreditEffect,
    plan_effects,
)
from src.sampling.activation.orchestrator import ActivationOrchestrator
from src.sampling.activation.repository import (
    ActivationRepository,
    CommittedActivation,
    SqlActivationRepository,
)
from src.sampling.activation.schemas import (
    ActivationMode,
    ActivationReport,
    ActivationRequest,
    DisplayRead,
    EffectOutcome,
    EffectStatus,
    InventoryEntry,
    StoreRead,
)
from src.sampling.activation.transitions import (
    ActivationPlan,
    CreateNew,
    LinkToExisting,
    Replay,
    guard_activation,
    plan_activation,
    resolve_brand,
)
from src.sampling.activation.validation import validate_activation_request

__all__ = [
    "ActivationMode",
    "ActivationOrchestrator",
    "ActivationPlan",
    "ActivationReport",
    "ActivationRepository",
    "ActivationRequest",
    "CommittedActivation",
    "CreateNew",
    "CrmTagSyncEffect",
    "DisplayRead",
    "EffectOutcome",
    "EffectRunner",
    "EffectStatus",
    "InventoryEntry",
    "LinkToExisting",
    "NotificationEffect",
    "Replay",
    "SetupCreditEffect",
    "SqlActivationRepository",
    "StoreRead",
    "guard_activation",
    "plan_activation",
    "plan_effects",
    "resolve_brand",
    "validate_activation_request",
]
