"""Activation lifecycle: the active/inactive flag, independent of review state.

Deactivating removes edit capability, so it needs an explicit confirmation
first. Re-activating is always safe and never asks. A toggle for a code that
already has a mutation in flight is refused.
"""

from __future__ import annotations

import logging

from .errors import CaseBusyError, InactiveCaseError
from .guards import BusyRegistry
from .models import CaseFile
from .prompts import Confirmer
from .repository import CaseRepository

logger = logging.getLogger(__name__)


def ensure_editable(case: CaseFile) -> None:
    """Raise InactiveCaseError if *case* may not be edited."""
    if not case.active:
        raise InactiveCaseError(case.code)


class ActivationLifecycle:
    def __init__(
        self,
        repository: CaseRepository,
        busy: BusyRegistry,
        confirmer: Confirmer,
    ) -> None:
        self.repository = repository
        self.busy = busy
        self.confirmer = confirmer

    def is_busy(self, code: str) -> bool:
        return self.busy.is_busy(code)

    async def activate(self, code: str) -> CaseFile:
        """Re-enable *code*. No confirmation is asked."""
        async with self.busy.hold(code):
            return await self.repository.set_active(code, True)

    async def deactivate(self, code: str) -> CaseFile | None:
        """Disable *code* after confirmation; None if the user declined.

        Raises:
            CaseBusyError: a mutation for *code* is already in flight
        """
        # No second prompt while a toggle for this code is in flight
        if self.busy.is_busy(code):
            raise CaseBusyError(code)
        if not self.confirmer.confirm(
            f"Deactivate case file {code}? It can be activated again later."
        ):
            logger.info("Deactivation cancelled", extra={"code": code})
            return None
        async with self.busy.hold(code):
            return await self.repository.set_active(code, False)

    async def toggle(self, case: CaseFile) -> CaseFile | None:
        """Flip the flag of *case* based on its current value."""
        if case.active:
            return await self.deactivate(case.code)
        return await self.activate(case.code)
