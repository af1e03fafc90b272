"""AllerSafe client: allergen-safety menu checks for families and restaurants."""

from .checkout import (
    SUBSCRIPTION_PACKAGES,
    AddressBar,
    CheckoutReconciler,
    ReconciliationOutcome,
    ReconciliationResult,
    begin_checkout,
    parse_return_url,
    strip_return_params,
)
from .config import AllerSafeConfig, load_config
from .errors import (
    AllerSafeError,
    BackendError,
    PolicyDenied,
    TransportError,
    ValidationError,
)
from .gateway import BackendGateway
from .models import (
    Family,
    FamilyMember,
    PaymentStatusSnapshot,
    Principal,
    Role,
    SafetyAnalysis,
    ScanResult,
    SubscriptionStatus,
    Verdict,
)
from .policy import Capability, CapabilitySet, capabilities_for, capabilities_of
from .session import CredentialStore, SessionStore
from .workflow import ActionResult, PartnerMenuCheck, SafetyWorkflow, WorkflowState

__all__ = [
    "AllerSafeConfig",
    "load_config",
    "AllerSafeError",
    "ValidationError",
    "BackendError",
    "TransportError",
    "PolicyDenied",
    "Role",
    "SubscriptionStatus",
    "Principal",
    "PaymentStatusSnapshot",
    "ScanResult",
    "SafetyAnalysis",
    "Verdict",
    "Family",
    "FamilyMember",
    "Capability",
    "CapabilitySet",
    "capabilities_for",
    "capabilities_of",
    "CredentialStore",
    "SessionStore",
    "BackendGateway",
    "SUBSCRIPTION_PACKAGES",
    "AddressBar",
    "CheckoutReconciler",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "begin_checkout",
    "parse_return_url",
    "strip_return_params",
    "ActionResult",
    "SafetyWorkflow",
    "PartnerMenuCheck",
    "WorkflowState",
]
