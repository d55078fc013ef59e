"""Case file and evidence records, plus normalization of backend payloads.

The backend is inconsistent about envelopes and field types, so every
payload goes through the functions here before anything else sees it:

- list envelopes: bare array, then ``data``, then ``rows``, else empty
- ids: numeric strings become ints, garbage becomes None (or 0 for owners)
- ``activo``: only ``True``, ``1`` and ``"1"`` mean active; absent means active
- timestamps: ISO-8601 strings become aware datetimes, garbage becomes None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("data", "rows")
_ACTIVE_TRUE_VALUES = (1, "1")


class ReviewState(Enum):
    """Review state of a case file; values are the wire representation."""

    PENDING = "pendiente"
    APPROVED = "aprobado"
    REJECTED = "rechazado"

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class EvidenceItem:
    id: int | None
    description: str | None = None
    color: str | None = None
    size: str | None = None
    weight: float | None = None
    location: str | None = None
    technician_id: int | None = None


@dataclass(frozen=True)
class CaseFile:
    """A reviewable case file ("expediente").

    ``code`` is the business key used for every lookup and mutation.
    ``justification`` is non-empty exactly when ``state`` is REJECTED.
    """

    id: int | None
    code: str
    description: str = ""
    registration_date: datetime | None = None
    technician_id: int = 0
    technician_name: str | None = None
    state: ReviewState = ReviewState.PENDING
    justification: str = ""
    approver_id: int | None = None
    approver_name: str | None = None
    state_changed_at: datetime | None = None
    active: bool = True
    evidence: tuple[EvidenceItem, ...] = ()

    @property
    def editable(self) -> bool:
        return self.active

    def with_evidence(self, items: list[EvidenceItem] | tuple[EvidenceItem, ...]) -> CaseFile:
        return replace(self, evidence=tuple(items))


class MalformedPayloadError(ValueError):
    """Payload shape cannot be interpreted as a list of records."""


# =============================================================================
# Coercion helpers
# =============================================================================


def coerce_int(value: Any, default: int | None = None) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def coerce_active(value: Any) -> bool:
    """Interpret the backend's ``activo`` flag.

    Absent (None) counts as active, since new case files start active.
    """
    if value is None:
        return True
    if value is True:
        return True
    if isinstance(value, bool):
        return False
    return value in _ACTIVE_TRUE_VALUES


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def parse_state(value: Any) -> ReviewState:
    if value is None or value == "":
        return ReviewState.PENDING
    for state in ReviewState:
        if value == state.value:
            return state
    logger.warning("Unknown review state %r, treating as pending", value)
    return ReviewState.PENDING


# =============================================================================
# Envelope and record normalization
# =============================================================================


def unwrap_rows(payload: Any) -> list:
    """Extract the record list from a list response.

    Priority: bare array, then ``data``, then ``rows``, else empty. A ``data``
    or ``rows`` key that is present but not a list is skipped.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in _ENVELOPE_KEYS:
            rows = payload.get(key)
            if isinstance(rows, list):
                return rows
    return []


def unwrap_rows_strict(payload: Any) -> list[dict]:
    """Like :func:`unwrap_rows` but rejects shapes that carry no records.

    Used where a bad payload must be distinguishable from an empty one.
    """
    if not isinstance(payload, (list, dict)):
        raise MalformedPayloadError(f"Expected list or object, got {type(payload).__name__}")
    if isinstance(payload, dict) and not any(
        isinstance(payload.get(key), list) for key in _ENVELOPE_KEYS
    ):
        raise MalformedPayloadError("Object response has no 'data' or 'rows' list")
    rows = unwrap_rows(payload)
    for row in rows:
        if not isinstance(row, dict):
            raise MalformedPayloadError(f"Record is {type(row).__name__}, not an object")
    return rows


def unwrap_record(payload: Any) -> dict | None:
    """Return the single case record carried by a mutation response, if any."""
    if not isinstance(payload, dict):
        return None
    if "codigo" in payload:
        return payload
    for key in ("data", "expediente"):
        inner = payload.get(key)
        if isinstance(inner, dict) and "codigo" in inner:
            return inner
    return None


def case_from_payload(raw: dict) -> CaseFile:
    """Normalize one backend case record into a CaseFile."""
    state = parse_state(raw.get("estado"))
    justification = str(raw.get("justificacion") or "")
    if state is not ReviewState.REJECTED:
        justification = ""
    elif not justification.strip():
        logger.warning(
            "Rejected case file without justification from backend",
            extra={"code": raw.get("codigo")},
        )

    return CaseFile(
        id=coerce_int(raw.get("id")),
        code=str(raw.get("codigo") or ""),
        description=str(raw.get("descripcion") or ""),
        registration_date=parse_timestamp(raw.get("fecha_registro")),
        technician_id=coerce_int(raw.get("tecnico_id"), 0),
        technician_name=_optional_str(raw.get("tecnico_username")),
        state=state,
        justification=justification,
        approver_id=coerce_int(raw.get("aprobador_id")),
        approver_name=_optional_str(raw.get("aprobador_username")),
        state_changed_at=parse_timestamp(raw.get("fecha_estado")),
        active=coerce_active(raw.get("activo")),
    )


def evidence_from_payload(raw: dict) -> EvidenceItem:
    return EvidenceItem(
        id=coerce_int(raw.get("id")),
        description=_optional_str(raw.get("descripcion")),
        color=_optional_str(raw.get("color")),
        size=_optional_str(raw.get("tamano")),
        weight=coerce_float(raw.get("peso")),
        location=_optional_str(raw.get("ubicacion")),
        technician_id=coerce_int(raw.get("tecnico_id")),
    )


def normalize_cases(payload: Any) -> list[CaseFile]:
    """Normalize a list response into CaseFiles, skipping non-object rows."""
    cases = []
    for row in unwrap_rows(payload):
        if not isinstance(row, dict):
            logger.warning("Skipping non-object case record: %s", type(row).__name__)
            continue
        cases.append(case_from_payload(row))
    return cases
