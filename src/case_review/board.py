"""Review board: the user-facing operations over the working set.

Wires the repository, evidence join, review workflow, activation lifecycle
and reconciler together. Every action follows the same path: local checks,
one mutation, full refresh, one notification. No error is fatal; each
action reports an :class:`Outcome` and the board stays usable.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from .activation import ActivationLifecycle, ensure_editable
from .config import Config
from .errors import CaseReviewError, FetchError, NotFoundError, ValidationError
from .evidence import EvidenceAggregator
from .guards import BusyRegistry
from .http import ApiClient
from .models import CaseFile
from .prompts import Confirmer, JustificationCollector, Notifier
from .repository import CaseRepository
from .review import ReviewWorkflow
from .session import SessionProvider
from .sync import SyncReconciler

logger = logging.getLogger(__name__)

OK = "ok"
CANCELLED = "cancelled"
FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    status: str
    case: CaseFile | None = None
    message: str = ""
    error: CaseReviewError | None = None

    @property
    def ok(self) -> bool:
        return self.status == OK


class ReviewBoard:
    """Headless controller for case review and case file maintenance."""

    def __init__(
        self,
        config: Config,
        session: SessionProvider,
        *,
        confirmer: Confirmer,
        notifier: Notifier,
        collector: JustificationCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.notifier = notifier
        self.api = ApiClient(config, session, transport=transport)
        self.busy = BusyRegistry()
        self.repository = CaseRepository(self.api)
        self.aggregator = EvidenceAggregator(self.api)
        self.reconciler = SyncReconciler(self.repository, self.aggregator)
        self.review = ReviewWorkflow(
            self.repository,
            session,
            self.busy,
            config,
            lookup=self.reconciler.lookup,
            confirmer=confirmer,
            collector=collector,
        )
        self.activation = ActivationLifecycle(self.repository, self.busy, confirmer)

    async def __aenter__(self) -> ReviewBoard:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.api.aclose()

    @property
    def cases(self) -> list[CaseFile]:
        return self.reconciler.cases

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _fail(self, title: str, error: CaseReviewError) -> Outcome:
        message = error.safe_message
        if isinstance(error, FetchError):
            logger.error("%s: %s", title, error)
            self.notifier.error(title, message)
        else:
            logger.info("%s: %s", title, error)
            self.notifier.warning(title, message)
        return Outcome(FAILED, message=message, error=error)

    async def _run(
        self,
        title: str,
        mutation: Callable[[], Awaitable[CaseFile | None]],
        success: Callable[[CaseFile], str],
        previous_code: str | None = None,
    ) -> Outcome:
        try:
            case = await self.reconciler.reconcile(mutation(), previous_code)
        except CaseReviewError as e:
            return self._fail(title, e)

        if case is None:
            return Outcome(CANCELLED, message="Cancelled.")

        message = success(case)
        self.notifier.success(title, message)
        if self.reconciler.stale:
            self.notifier.warning(
                "Refresh failed",
                "The change was saved but the list could not be reloaded.",
            )
        return Outcome(OK, case=case, message=message)

    def _current(self, code: str) -> CaseFile:
        """The working-set record for *code*; edits never look it up remotely.

        Raises:
            ValidationError: load() has not completed yet
            NotFoundError: *code* is not in the loaded working set
        """
        if not self.reconciler.loaded:
            raise ValidationError(
                "Working set not loaded",
                safe_message="Load the case files before changing them.",
            )
        case = self.reconciler.lookup(code)
        if case is None:
            raise NotFoundError(
                f"Case file {code} not in working set",
                status_code=404,
                fallback=f"Case file {code} does not exist.",
            )
        return case


    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def load(self) -> Outcome:
        """Fetch the working set (cases + evidence) from the backend."""
        try:
            await self.reconciler.refresh()
        except CaseReviewError as e:
            return self._fail("Could not load case files", e)
        return Outcome(OK, message=f"{len(self.cases)} case files loaded.")

    async def approve(self, code: str) -> Outcome:
        return await self._run(
            "Approve case file",
            lambda: self.review.approve(code),
            lambda case: f"Case file {case.code} was approved.",
        )

    async def reject(self, code: str, justification: str) -> Outcome:
        return await self._run(
            "Reject case file",
            lambda: self.review.reject(code, justification),
            lambda case: f"Case file {case.code} was rejected.",
        )

    async def request_rejection(self, code: str) -> Outcome:
        """Reject after asking for the justification interactively."""
        return await self._run(
            "Reject case file",
            lambda: self.review.request_rejection(code),
            lambda case: f"Case file {case.code} was rejected.",
        )

    async def edit(self, code: str, new_code: str, description: str) -> Outcome:
        """Change code and/or description of an active case file.

        Requires a loaded working set; an inactive case is refused before
        any request.
        """

        async def mutation() -> CaseFile:
            ensure_editable(self._current(code))
            async with self.busy.hold(code):
                return await self.repository.update(code, new_code, description)

        return await self._run(
            "Save case file",
            mutation,
            lambda case: f"Case file {case.code} was updated.",
            previous_code=code,
        )

    async def activate(self, code: str) -> Outcome:
        return await self._run(
            "Activate case file",
            lambda: self.activation.activate(code),
            lambda case: f"Case file {case.code} was activated.",
        )

    async def deactivate(self, code: str) -> Outcome:
        return await self._run(
            "Deactivate case file",
            lambda: self.activation.deactivate(code),
            lambda case: f"Case file {case.code} was deactivated.",
        )

    async def toggle_active(self, code: str) -> Outcome:
        async def mutation() -> CaseFile | None:
            return await self.activation.toggle(self._current(code))

        return await self._run(
            "Change case file activation",
            mutation,
            lambda case: f"Case file {case.code} was {'activated' if case.active else 'deactivated'}.",
        )
