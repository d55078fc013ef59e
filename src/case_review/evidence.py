"""Evidence join: attach each case file's evidence items, fetched by code.

One request per case, run concurrently under a semaphore. A case whose
evidence cannot be fetched or parsed keeps an empty evidence list; the
listing as a whole never fails because of one case.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from urllib.parse import quote

from .errors import CaseReviewError, DegradedJoinError
from .http import ApiClient
from .models import CaseFile, EvidenceItem, MalformedPayloadError, evidence_from_payload, unwrap_rows_strict
from .repository import LIST_PATH

logger = logging.getLogger(__name__)


def evidence_path(code: str) -> str:
    return f"{LIST_PATH}/{quote(code, safe='')}/Indicios"


class EvidenceAggregator:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self._semaphore = asyncio.Semaphore(api.config.max_concurrent_fetches)

    async def fetch_evidence(self, code: str, query: str = "") -> list[EvidenceItem]:
        """Fetch the first page of evidence items for one case file.

        Raises:
            FetchError: transport failure or non-2xx status
            MalformedPayloadError: the response holds no recognizable records
        """
        async with self._semaphore:
            payload = await self.api.get_json(
                evidence_path(code),
                params={"q": query, "page": 1, "pageSize": self.api.config.evidence_page_size},
            )
        return [evidence_from_payload(row) for row in unwrap_rows_strict(payload)]

    async def _evidence_or_empty(self, case: CaseFile) -> CaseFile:
        try:
            items = await self.fetch_evidence(case.code)
        except (CaseReviewError, MalformedPayloadError) as e:
            degraded = DegradedJoinError(case.code, e)
            logger.warning(str(degraded), extra={"code": case.code})
            return case.with_evidence(())
        except Exception as e:
            degraded = DegradedJoinError(case.code, e)
            logger.warning(str(degraded), exc_info=True, extra={"code": case.code})
            return case.with_evidence(())
        return case.with_evidence(items)

    async def attach_evidence(self, cases: Sequence[CaseFile]) -> list[CaseFile]:
        """Return *cases* in the same order, each with its evidence attached."""
        if not cases:
            return []
        joined = await asyncio.gather(*(self._evidence_or_empty(case) for case in cases))
        logger.debug(
            "Attached evidence to %d case files (%d without evidence)",
            len(joined),
            sum(1 for case in joined if not case.evidence),
        )
        return list(joined)
