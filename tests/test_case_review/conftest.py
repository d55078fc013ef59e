"""Shared fixtures: an in-memory case file backend behind httpx.MockTransport."""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from case_review.activation import ActivationLifecycle
from case_review.config import Config
from case_review.evidence import EvidenceAggregator
from case_review.guards import BusyRegistry
from case_review.http import ApiClient
from case_review.repository import CaseRepository
from case_review.review import ReviewWorkflow
from case_review.session import StaticSessionProvider, build_session
from case_review.sync import SyncReconciler

API_URL = "http://cases.test"


def make_case(code: str, **overrides) -> dict:
    """Wire-format case record as the backend sends it."""
    record = {
        "id": overrides.pop("id", 1),
        "codigo": code,
        "descripcion": f"Description of {code}",
        "fecha_registro": "2025-03-01T10:00:00Z",
        "tecnico_id": 3,
        "tecnico_username": "carlos",
        "estado": "pendiente",
        "justificacion": None,
        "aprobador_id": None,
        "aprobador_username": None,
        "fecha_estado": None,
        "activo": True,
    }
    record.update(overrides)
    return record


def make_evidence(item_id: int, **overrides) -> dict:
    record = {
        "id": item_id,
        "descripcion": f"Item {item_id}",
        "color": "negro",
        "tamano": "pequeño",
        "peso": 12.5,
        "ubicacion": "Bodega A",
        "tecnico_id": 3,
    }
    record.update(overrides)
    return record


class FakeBackend:
    """In-memory stand-in for the case file REST API.

    Records every request in ``requests`` as (method, path, params, body).
    """

    def __init__(self) -> None:
        self.users = {
            "tok-ana": {"id": 7, "nombre": "Ana"},
            "tok-luis": {"id": 9, "nombre": "Luis"},
        }
        self.cases: dict[str, dict] = {}
        self.evidence: dict[str, list[dict]] = {}
        self.list_envelope = "data"
        self.failing_evidence: set[str] = set()
        self.malformed_evidence: set[str] = set()
        self.fail_list_status: int | None = None
        self.fail_mutation: tuple[int, dict] | None = None
        self.echo_records = True
        self.requests: list[tuple[str, str, dict, dict | None]] = []

    # -- seeding ---------------------------------------------------------

    def add_case(self, code: str, evidence: list[dict] | None = None, **fields) -> dict:
        fields.setdefault("id", len(self.cases) + 1)
        record = make_case(code, **fields)
        self.cases[code] = record
        self.evidence[code] = evidence or []
        return record

    # -- inspection ------------------------------------------------------

    def mutations(self) -> list[tuple[str, str, dict, dict | None]]:
        return [r for r in self.requests if r[0] != "GET"]

    def calls(self, method: str, path_prefix: str = "") -> int:
        return sum(1 for r in self.requests if r[0] == method and r[1].startswith(path_prefix))

    # -- transport -------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, params, body))

        user = self._authenticate(request)
        if user is None:
            return httpx.Response(401, json={"message": "Token inválido"})

        parts = [p for p in path.split("/") if p]
        if request.method == "GET" and parts == ["Expedientes"]:
            return self._list(params)
        if request.method == "GET" and len(parts) == 3 and parts[0] == "Expedientes" and parts[2] == "Indicios":
            return self._evidence(parts[1])
        if parts[:1] == ["expedientes"] and len(parts) >= 2:
            if self.fail_mutation is not None:
                status, payload = self.fail_mutation
                return httpx.Response(status, json=payload)
            code = parts[1]
            if code not in self.cases:
                return httpx.Response(404, json={"message": f"Expediente {code} no encontrado"})
            if request.method == "PUT" and len(parts) == 2:
                return self._update(code, body)
            if request.method == "PATCH" and parts[2:] == ["activo"]:
                return self._set_active(code, body)
            if request.method == "PATCH" and parts[2:] == ["estado"]:
                return self._set_state(code, body, user)
        return httpx.Response(404, json={"message": "Ruta no encontrada"})

    def _authenticate(self, request: httpx.Request) -> dict | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None
        return self.users.get(header[len("Bearer "):])

    def _reply(self, record: dict) -> httpx.Response:
        if self.echo_records:
            return httpx.Response(200, json=copy.deepcopy(record))
        return httpx.Response(200, json={"ok": True})

    def _list(self, params: dict) -> httpx.Response:
        if self.fail_list_status is not None:
            return httpx.Response(self.fail_list_status, json={"message": "Base de datos no disponible"})
        page = int(params.get("page", 1))
        size = int(params.get("pageSize", 50))
        rows = list(self.cases.values())[(page - 1) * size : page * size]
        rows = copy.deepcopy(rows)
        if self.list_envelope == "array":
            return httpx.Response(200, json=rows)
        return httpx.Response(200, json={self.list_envelope: rows, "total": len(self.cases)})

    def _evidence(self, code: str) -> httpx.Response:
        if code in self.failing_evidence:
            return httpx.Response(500, json={"message": "Error interno"})
        if code in self.malformed_evidence:
            return httpx.Response(200, json={"unexpected": "shape"})
        return httpx.Response(200, json={"data": copy.deepcopy(self.evidence.get(code, []))})

    def _update(self, code: str, body: dict) -> httpx.Response:
        record = self.cases.pop(code)
        record["codigo"] = body["codigo"]
        record["descripcion"] = body["descripcion"]
        self.cases[body["codigo"]] = record
        self.evidence[body["codigo"]] = self.evidence.pop(code, [])
        return self._reply(record)

    def _set_active(self, code: str, body: dict) -> httpx.Response:
        record = self.cases[code]
        record["activo"] = 1 if body["activo"] else 0
        return self._reply(record)

    def _set_state(self, code: str, body: dict, user: dict) -> httpx.Response:
        record = self.cases[code]
        estado = body["estado"]
        if estado == "rechazado" and not (body.get("justificacion") or "").strip():
            return httpx.Response(400, json={"message": "La justificación es obligatoria"})
        record["estado"] = estado
        record["justificacion"] = body.get("justificacion") if estado == "rechazado" else None
        record["aprobador_id"] = user["id"]
        record["aprobador_username"] = user["nombre"]
        record["fecha_estado"] = datetime.now(timezone.utc).isoformat()
        return self._reply(record)


class ScriptedPrompter:
    """Confirmer + justification collector with canned answers."""

    def __init__(self, confirm: bool = True, justification: str | None = "Motivo") -> None:
        self.answer = confirm
        self.justification = justification
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer

    def collect_justification(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        return self.justification


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    def success(self, title: str, message: str) -> None:
        self.events.append(("success", title, message))

    def warning(self, title: str, message: str) -> None:
        self.events.append(("warning", title, message))

    def error(self, title: str, message: str) -> None:
        self.events.append(("error", title, message))

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.events]


@pytest.fixture(autouse=True)
def _restore_package_logger():
    """Undo setup_logging() side effects so caplog keeps working."""
    pkg_logger = logging.getLogger("case_review")
    saved = (list(pkg_logger.handlers), pkg_logger.level, pkg_logger.propagate)
    yield
    pkg_logger.handlers[:] = saved[0]
    pkg_logger.setLevel(saved[1])
    pkg_logger.propagate = saved[2]


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.add_case("EXP-001", evidence=[make_evidence(1), make_evidence(2)])
    fake.add_case("EXP-002", evidence=[make_evidence(3)])
    fake.add_case(
        "EXP-003",
        evidence=[],
        estado="aprobado",
        aprobador_id=9,
        aprobador_username="Luis",
        fecha_estado="2025-03-02T09:30:00Z",
        activo=0,
    )
    return fake


@pytest.fixture
def config() -> Config:
    return Config(
        api_url=API_URL,
        timeout_seconds=5,
        max_retries=0,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        confirm_approvals=False,
    )


@pytest.fixture
def session() -> StaticSessionProvider:
    return StaticSessionProvider(build_session("tok-ana", user_id=7, user_name="Ana", role="coordinador"))


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def api(config, session, backend):
    client = ApiClient(config, session, transport=backend.transport())
    yield client
    await client.aclose()


@pytest.fixture
def repository(api) -> CaseRepository:
    return CaseRepository(api)


@pytest.fixture
def aggregator(api) -> EvidenceAggregator:
    return EvidenceAggregator(api)


@pytest.fixture
def reconciler(repository, aggregator) -> SyncReconciler:
    return SyncReconciler(repository, aggregator)


@pytest.fixture
def busy() -> BusyRegistry:
    return BusyRegistry()


@pytest.fixture
def workflow(repository, session, busy, config, reconciler, prompter) -> ReviewWorkflow:
    return ReviewWorkflow(
        repository,
        session,
        busy,
        config,
        lookup=reconciler.lookup,
        confirmer=prompter,
        collector=prompter,
    )


@pytest.fixture
def activation(repository, busy, prompter) -> ActivationLifecycle:
    return ActivationLifecycle(repository, busy, prompter)
