"""Review workflow: approve / reject state machine for case files.

States are pending (initial), approved and rejected. Allowed moves:

    pending  -> approved | rejected
    approved -> rejected          (only with allow_direct_flip)
    rejected -> approved          (only with allow_direct_flip)

Nothing ever returns to pending. Approving an approved case, or rejecting a
rejected one with the same justification, is a successful no-op that issues
no request. Rejecting a rejected case with new text re-submits it.

Every accepted transition records the reviewer (id and name from the
session) and the transition time. Validation, identity and policy checks
all run before any request is made.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .config import Config
from .errors import CaseBusyError, PermissionDeniedError, TransitionError, ValidationError
from .guards import BusyRegistry
from .models import CaseFile, ReviewState
from .prompts import Confirmer, JustificationCollector
from .repository import CaseRepository
from .session import Identity, Role, SessionProvider, require_identity

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ReviewState, frozenset[ReviewState]] = {
    ReviewState.PENDING: frozenset({ReviewState.APPROVED, ReviewState.REJECTED}),
    ReviewState.APPROVED: frozenset({ReviewState.REJECTED}),
    ReviewState.REJECTED: frozenset({ReviewState.APPROVED}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_allowed(current: ReviewState, target: ReviewState, allow_direct_flip: bool = True) -> bool:
    """Whether *current* -> *target* is a legal transition under the policy."""
    if target not in TRANSITIONS[current]:
        return False
    if current is not ReviewState.PENDING and not allow_direct_flip:
        return False
    return True


@dataclass
class RejectionDraft:
    """The single rejection being prepared; holds the justification typed so far."""

    code: str
    justification: str = ""


class ReviewWorkflow:
    def __init__(
        self,
        repository: CaseRepository,
        session: SessionProvider,
        busy: BusyRegistry,
        config: Config,
        *,
        lookup: Callable[[str], CaseFile | None] | None = None,
        confirmer: Confirmer | None = None,
        collector: JustificationCollector | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.session = session
        self.busy = busy
        self.config = config
        self._lookup = lookup or (lambda code: None)
        self.confirmer = confirmer
        self.collector = collector
        self._clock = clock
        self._draft: RejectionDraft | None = None

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _reviewer(self) -> Identity:
        identity = require_identity(self.session)
        if self.config.enforce_roles and identity.role is not Role.COORDINATOR:
            raise PermissionDeniedError(
                f"User {identity.id} with role {identity.role} cannot review case files",
                safe_message="Only coordinators can approve or reject case files.",
            )
        return identity

    def _check_transition(self, code: str, target: ReviewState) -> CaseFile | None:
        """Return the current record if already in *target*, raise if disallowed."""
        current = self._lookup(code)
        if current is None:
            return None
        if current.state is target:
            return current
        if not is_allowed(current.state, target, self.config.allow_direct_flip):
            raise TransitionError(code, current.state.label, target.label)
        return None

    def _attribute(
        self,
        record: CaseFile,
        target: ReviewState,
        justification: str,
        reviewer: Identity,
        now: datetime,
    ) -> CaseFile:
        """Overlay the transition onto the backend's answer.

        Fields the backend reported for this transition win; missing ones are
        filled from the caller and the call time.
        """
        reported = record.state is target
        return replace(
            record,
            state=target,
            justification=justification,
            approver_id=record.approver_id if reported and record.approver_id is not None else reviewer.id,
            approver_name=record.approver_name if reported and record.approver_name else reviewer.name,
            state_changed_at=record.state_changed_at if reported and record.state_changed_at else now,
        )

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------

    async def approve(self, code: str) -> CaseFile | None:
        """Approve a case file.

        Returns the updated record, the unchanged record if it was already
        approved, or None if the user declined the confirmation.

        Raises:
            MissingIdentityError: no reviewer identity (no request issued)
            TransitionError: blocked by the flip policy (no request issued)
            CaseBusyError: another mutation for *code* is in flight
            NotFoundError, FetchError: backend failures
        """
        reviewer = self._reviewer()
        unchanged = self._check_transition(code, ReviewState.APPROVED)
        if unchanged is not None:
            logger.debug("Case file %s already approved, nothing to do", code)
            return unchanged

        # No prompt while another mutation for this code is in flight
        if self.busy.is_busy(code):
            raise CaseBusyError(code)
        if self.config.confirm_approvals and self.confirmer is not None:
            if not self.confirmer.confirm(f"Approve case file {code}?"):
                logger.info("Approval cancelled", extra={"code": code})
                return None

        async with self.busy.hold(code):
            now = self._clock()
            record = await self.repository.set_state(code, ReviewState.APPROVED, "")
        logger.info("Approved case file", extra={"code": code, "approver_id": reviewer.id})
        return self._attribute(record, ReviewState.APPROVED, "", reviewer, now)

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    @property
    def draft(self) -> RejectionDraft | None:
        return self._draft

    def begin_rejection(self, code: str) -> RejectionDraft:
        """Open the rejection slot for *code*, discarding any other draft."""
        if self._draft is not None:
            logger.debug("Discarding rejection draft for %s", self._draft.code)
        self._draft = RejectionDraft(code=code)
        return self._draft

    def cancel_rejection(self) -> None:
        self._draft = None

    async def submit_rejection(self) -> CaseFile | None:
        """Send the open draft.

        A validation or identity failure keeps the draft open so the text can
        be corrected. Once a request has been issued the slot is cleared,
        whether it succeeded or not.

        Raises:
            ValidationError: no open draft, or blank justification
        """
        draft = self._draft
        if draft is None:
            raise ValidationError("No rejection is being prepared.")

        justification = draft.justification.strip()
        if not justification:
            raise ValidationError(
                "A justification is required to reject a case file.",
                safe_message="Enter a justification to reject the case file.",
            )
        reviewer = self._reviewer()
        unchanged = self._check_transition(draft.code, ReviewState.REJECTED)
        if unchanged is not None and unchanged.justification == justification:
            self._draft = None
            return unchanged

        try:
            async with self.busy.hold(draft.code):
                now = self._clock()
                record = await self.repository.set_state(
                    draft.code, ReviewState.REJECTED, justification
                )
        finally:
            if self._draft is draft:
                self._draft = None

        logger.info("Rejected case file", extra={"code": draft.code, "approver_id": reviewer.id})
        return self._attribute(record, ReviewState.REJECTED, justification, reviewer, now)

    async def reject(self, code: str, justification: str) -> CaseFile | None:
        """Reject *code* with *justification* in one step."""
        draft = self.begin_rejection(code)
        draft.justification = justification or ""
        try:
            return await self.submit_rejection()
        finally:
            if self._draft is draft:
                self.cancel_rejection()

    async def request_rejection(self, code: str) -> CaseFile | None:
        """Collect a justification through the collector, then reject.

        Returns None if the user cancelled the prompt.
        """
        if self.collector is None:
            raise ValidationError("No justification collector configured.")

        draft = self.begin_rejection(code)
        text = self.collector.collect_justification(f"Justification for rejecting case file {code}:")
        if text is None or self._draft is not draft:
            if self._draft is draft:
                self.cancel_rejection()
            logger.info("Rejection cancelled", extra={"code": code})
            return None
        draft.justification = text
        try:
            return await self.submit_rejection()
        finally:
            if self._draft is draft:
                self.cancel_rejection()
