"""Case review client - case file review and lifecycle workflow.

Headless client for a case management backend: technicians register case
files ("expedientes") with evidence items ("indicios"); coordinators approve
them or reject them with a justification.

Features:
    - Case file listing with defensive payload normalization
    - Concurrent, fault-isolating evidence join
    - Approve / reject state machine with reviewer attribution
    - Activation lifecycle with confirmation before deactivation
    - Full refetch after every write

Usage:
    python -m case_review list
"""

__version__ = "0.1.0"

from .errors import (
    CaseReviewError,
    ConfigurationError,
    ValidationError,
    InactiveCaseError,
    TransitionError,
    MissingIdentityError,
    PermissionDeniedError,
    CaseBusyError,
    FetchError,
    NotFoundError,
    DegradedJoinError,
)
from .config import Config
from .models import CaseFile, EvidenceItem, ReviewState
from .session import Identity, Role, Session, SecretStr, StaticSessionProvider
from .http import ApiClient
from .repository import CaseRepository
from .evidence import EvidenceAggregator
from .review import ReviewWorkflow
from .activation import ActivationLifecycle
from .sync import SyncReconciler
from .board import Outcome, ReviewBoard
from .oplog import setup_logging

__all__ = [
    "__version__",
    "CaseReviewError",
    "ConfigurationError",
    "ValidationError",
    "InactiveCaseError",
    "TransitionError",
    "MissingIdentityError",
    "PermissionDeniedError",
    "CaseBusyError",
    "FetchError",
    "NotFoundError",
    "DegradedJoinError",
    "Config",
    "CaseFile",
    "EvidenceItem",
    "ReviewState",
    "Identity",
    "Role",
    "Session",
    "SecretStr",
    "StaticSessionProvider",
    "ApiClient",
    "CaseRepository",
    "EvidenceAggregator",
    "ReviewWorkflow",
    "ActivationLifecycle",
    "SyncReconciler",
    "Outcome",
    "ReviewBoard",
    "setup_logging",
]
