"""Case file repository: list, look up and update case files by code."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from urllib.parse import quote

from .errors import NotFoundError, ValidationError
from .http import ApiClient
from .models import CaseFile, ReviewState, case_from_payload, normalize_cases, unwrap_record

logger = logging.getLogger(__name__)

LIST_PATH = "/Expedientes"
BY_CODE_PATH = "/expedientes"

# Upper bound on pages scanned by iter_all()/get()
MAX_PAGES = 200


def case_path(code: str, suffix: str = "") -> str:
    """Path for a single case file, addressed by its percent-encoded code."""
    return f"{BY_CODE_PATH}/{quote(code, safe='')}{suffix}"


class CaseRepository:
    """Reads and writes case files on the backend.

    All mutations are addressed by business code. Returned records are
    always normalized CaseFiles without evidence attached.
    """

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    @property
    def page_size(self) -> int:
        return self.api.config.page_size

    async def list(self, page: int = 1, page_size: int | None = None) -> list[CaseFile]:
        """Fetch one page of case files.

        Raises:
            FetchError: non-2xx status or transport failure
        """
        payload = await self.api.get_json(
            LIST_PATH,
            params={"page": page, "pageSize": page_size or self.page_size},
            fallback="Could not load case files.",
        )
        cases = normalize_cases(payload)
        logger.debug("Listed %d case files (page %d)", len(cases), page)
        return cases

    async def iter_all(
        self, page_size: int | None = None, max_pages: int = MAX_PAGES
    ) -> AsyncIterator[CaseFile]:
        """Yield case files from every page until a short page is seen."""
        size = page_size or self.page_size
        for page in range(1, max_pages + 1):
            batch = await self.list(page=page, page_size=size)
            for case in batch:
                yield case
            if len(batch) < size:
                return
        logger.warning("Stopped paging case files after %d pages", max_pages)

    async def get(self, code: str) -> CaseFile:
        """Find a single case file by code.

        Raises:
            NotFoundError: no case file with that code
        """
        async for case in self.iter_all():
            if case.code == code:
                return case
        raise NotFoundError(
            f"Case file {code} not found",
            status_code=404,
            fallback=f"Case file {code} does not exist.",
        )

    async def update(self, code: str, new_code: str, description: str) -> CaseFile:
        """Edit the code and description of the case file currently at *code*.

        The request is addressed by the old code, so a changed ``new_code``
        renames the case file.

        Raises:
            ValidationError: empty code or description (no request issued)
            NotFoundError: unknown code
        """
        new_code = (new_code or "").strip()
        description = (description or "").strip()
        if not new_code:
            raise ValidationError("Case file code is required.")
        if not description:
            raise ValidationError("Case file description is required.")

        payload = await self.api.send_json(
            "PUT",
            case_path(code),
            {"codigo": new_code, "descripcion": description},
            fallback="Could not save the case file.",
        )
        logger.info("Updated case file", extra={"code": code, "new_code": new_code})
        return await self._record_or_reload(payload, new_code)

    async def set_active(self, code: str, active: bool) -> CaseFile:
        """Set the activation flag; review fields are left untouched."""
        payload = await self.api.send_json(
            "PATCH",
            case_path(code, "/activo"),
            {"activo": bool(active)},
            fallback="Could not change the activation of the case file.",
        )
        logger.info("Set case file activation", extra={"code": code, "active": active})
        return await self._record_or_reload(payload, code)

    async def set_state(
        self, code: str, state: ReviewState, justification: str = ""
    ) -> CaseFile:
        """Move the case file to *state*; the backend records the approver."""
        if state is ReviewState.PENDING:
            raise ValidationError("Case files cannot be moved back to pending.")
        payload = await self.api.send_json(
            "PATCH",
            case_path(code, "/estado"),
            {"estado": state.value, "justificacion": justification},
            fallback=f"Could not {'approve' if state is ReviewState.APPROVED else 'reject'} the case file.",
        )
        logger.info("Changed review state", extra={"code": code, "state": state.value})
        return await self._record_or_reload(payload, code)

    async def _record_or_reload(self, payload: object, code: str) -> CaseFile:
        record = unwrap_record(payload)
        if record is not None:
            return case_from_payload(record)
        return await self.get(code)
