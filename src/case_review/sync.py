"""Working set ownership and refetch-after-write reconciliation.

The reconciler is the only writer of the displayed case list. After every
successful mutation it applies the returned record as a transient patch and
then replaces the whole list with a fresh list + evidence join from the
backend. There is no incremental merge.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import replace

from .errors import FetchError
from .evidence import EvidenceAggregator
from .models import CaseFile
from .repository import CaseRepository

logger = logging.getLogger(__name__)


class SyncReconciler:
    def __init__(self, repository: CaseRepository, aggregator: EvidenceAggregator) -> None:
        self.repository = repository
        self.aggregator = aggregator
        self._cases: list[CaseFile] = []
        self._generation = 0
        self._applied_generation = 0
        self.stale = False

    @property
    def cases(self) -> list[CaseFile]:
        return list(self._cases)

    @property
    def loaded(self) -> bool:
        """Whether a refresh has completed at least once."""
        return self._applied_generation > 0

    def lookup(self, code: str) -> CaseFile | None:
        for case in self._cases:
            if case.code == code:
                return case
        return None

    async def refresh(self) -> list[CaseFile]:
        """Re-list and re-join, replacing the working set.

        If a newer refresh started while this one was in flight and has
        already been applied, this result is dropped. On failure the previous
        working set is kept and the error propagates.
        """
        self._generation += 1
        generation = self._generation

        listed = await self.repository.list()
        joined = await self.aggregator.attach_evidence(listed)

        if generation < self._applied_generation:
            logger.debug("Discarding stale refresh %d", generation)
            return self.cases

        self._applied_generation = generation
        self._cases = joined
        self.stale = False
        logger.info("Working set refreshed: %d case files", len(joined))
        return self.cases

    def apply_patch(self, case: CaseFile, previous_code: str | None = None) -> None:
        """Replace one record in place until the next refresh overwrites it.

        *previous_code* addresses the record when the mutation renamed it.
        Evidence already joined for that record is kept.
        """
        key = previous_code or case.code
        for index, current in enumerate(self._cases):
            if current.code == key:
                self._cases[index] = replace(case, evidence=current.evidence)
                return
        logger.debug("Patch for %s has no match in working set", key)

    async def reconcile(
        self, mutation: Awaitable[CaseFile | None], previous_code: str | None = None
    ) -> CaseFile | None:
        """Run *mutation*; on success patch the record, then refresh everything.

        A failed mutation propagates without touching the working set. A
        cancelled one (``None``) is returned as is. If the refresh fails the
        patched set stays in place and ``stale`` is set until the next
        successful refresh. The refreshed record is returned when the refresh
        finds it, else the patched record.
        """
        result = await mutation
        if result is None:
            return None

        self.apply_patch(result, previous_code)
        try:
            await self.refresh()
        except FetchError as e:
            self.stale = True
            logger.warning("Refresh after mutation failed: %s", e, extra={"code": result.code})
        return self.lookup(result.code) or result
