"""Endpoint tests. No browser: the probe factory is overridden with an estimating probe."""
from __future__ import annotations

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

# Conftest adds backend dir to path: use direct imports (no backend. prefix)
from config import Settings
from layout.probes import EstimatingProbe
from layout.resources import create_resources
from main import app, get_probe_factory, get_resources
from models import DocumentSnapshot, ElementBox


def _report() -> dict:
    return {
        "informe": {"motivoPresentacion": "Candidata para el puesto de analista."},
        "modulos": [
            {
                "titulo": "Experiencia profesional",
                "secciones": [
                    {
                        "titulo": "Puestos",
                        "tipo": "experiencia",
                        "items": [{"empresa": "Acme", "puesto": "Analista", "funciones": "Reporting"}],
                    }
                ],
            }
        ],
        "competencias": [{"nombre": "Liderazgo", "nivel": 8}],
    }


def _use(settings: Settings, tmp_path, document: DocumentSnapshot | None = None):
    resources = create_resources(settings, auto_cleanup=False)
    app.dependency_overrides[get_resources] = lambda: resources

    @contextmanager
    def estimating_probe(html=None):
        yield EstimatingProbe(resources.database, document=document)

    app.dependency_overrides[get_probe_factory] = lambda: estimating_probe
    return resources


@contextmanager
def _no_browser(html=None):
    raise RuntimeError("Executable doesn't exist")
    yield


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def resources(tmp_path):
    return _use(Settings(snapshot_dir=tmp_path), tmp_path)


def test_health_sets_request_id(client, resources):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers.get("X-Request-Id")


def test_inbound_request_id_is_kept(client, resources):
    response = client.get("/health", headers={"X-Request-Id": "render-42"})
    assert response.headers["X-Request-Id"] == "render-42"


def test_unsafe_request_id_is_replaced(client, resources):
    response = client.get("/health", headers={"X-Request-Id": "bad id with spaces"})
    assert response.headers["X-Request-Id"] != "bad id with spaces"


def test_health_pdf_snapshots_check_document(client, tmp_path):
    document = DocumentSnapshot(elements=[ElementBox(id="module-0", kind="module", height=120)])
    _use(Settings(snapshot_dir=tmp_path), tmp_path, document=document)
    response = client.get("/health/pdf")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "browser": "ready", "modules_seen": 1}


def test_health_pdf_without_modules_is_503(client, resources):
    assert client.get("/health/pdf").status_code == 503


def test_health_pdf_with_unavailable_browser_is_503(client, resources):
    app.dependency_overrides[get_probe_factory] = lambda: _no_browser
    response = client.get("/health/pdf")
    assert response.status_code == 503
    assert "Executable" in response.json()["detail"]


def test_prepare_normalizes_and_writes_layout(client, resources):
    response = client.post("/layout/prepare", json={"modulos": "bad"})
    assert response.status_code == 200
    data = response.json()
    assert data["modulos"] == []
    assert data["__layout"]["isLandscape"] is False
    assert data["__layout"]["fase2"]["enabled"] is True


def test_precalculate_injects_calculations(client, resources):
    response = client.post("/layout/precalculate", json=_report())
    assert response.status_code == 200
    calculations = response.json()["__layout"]["calculations"]
    assert calculations["performed"] is True
    assert calculations["pageCount"] == 1
    assert calculations["measurements"] == 3


def test_repeated_precalculate_hits_shared_cache(client, resources):
    client.post("/layout/precalculate", json=_report())
    client.post("/layout/precalculate", json=_report())
    stats = client.get("/layout/cache/stats").json()
    assert stats["hits"] >= 1
    assert stats["size"] >= 1


def test_precalculate_skipped_when_phantom_disabled(client, tmp_path):
    _use(Settings(snapshot_dir=tmp_path, phantom_enabled=False), tmp_path)
    data = client.post("/layout/precalculate", json=_report()).json()
    assert "calculations" not in data["__layout"]


def test_precalculate_without_browser_degrades_to_no_hints(client, resources):
    app.dependency_overrides[get_probe_factory] = lambda: _no_browser
    payload = _report()
    payload["competencias"] = [{"nombre": f"Competencia {i}", "nivel": 5} for i in range(60)]

    response = client.post("/layout/precalculate?probe=browser", json=payload)
    assert response.status_code == 200
    layout = response.json()["__layout"]
    assert layout["calculations"]["performed"] is False
    assert "Executable" in layout["calculations"]["error"]
    assert layout["isLandscape"] is False
    assert layout["calculations"]["breakPoints"] == []


def test_browser_precalculate_loads_template_styles(client, resources):
    seen = []

    @contextmanager
    def recording_probe(html=None):
        seen.append(html)
        yield EstimatingProbe(resources.database)

    app.dependency_overrides[get_probe_factory] = lambda: recording_probe
    payload = _report()
    payload["styles"] = ".module-title { font-size: 22pt; }"

    response = client.post("/layout/precalculate?probe=browser", json=payload)
    assert response.json()["__layout"]["calculations"]["performed"] is True
    assert "<style>.module-title { font-size: 22pt; }</style>" in seen[0]


def test_measure_with_unavailable_browser_is_503(client, resources):
    app.dependency_overrides[get_probe_factory] = lambda: _no_browser
    response = client.post("/layout/measure", json={"html": "<p>x</p>"})
    assert response.status_code == 503


def test_precalculate_rejects_unknown_probe(client, resources):
    response = client.post("/layout/precalculate?probe=magic", json=_report())
    assert response.status_code == 422


def test_measure_returns_report(client, tmp_path):
    document = DocumentSnapshot(
        text_lengths=[80, 90],
        elements=[ElementBox(id="module-0", kind="module", height=400, width=674)],
    )
    _use(Settings(snapshot_dir=tmp_path), tmp_path, document=document)
    response = client.post("/layout/measure", json={"html": "<div class='module'>x</div>"})
    assert response.status_code == 200
    report = response.json()
    assert report["orientation"] == "portrait"
    assert report["grid_scale"] == 1.0
    assert report["ready_flag"] == "JSREPORT_READY_TO_START"
    assert report["distribution"]["page_count"] == 1


def test_measure_oversized_under_error_policy_is_422(client, tmp_path):
    document = DocumentSnapshot(elements=[ElementBox(id="no-break-0", kind="no-break", height=5000)])
    _use(Settings(snapshot_dir=tmp_path, oversize_policy="error"), tmp_path, document=document)
    response = client.post("/layout/measure", json={"html": "<p>x</p>"})
    assert response.status_code == 422


def test_measure_requires_html(client, resources):
    assert client.post("/layout/measure", json={"html": ""}).status_code == 422


def test_snapshot_export_import_and_save(client, resources, tmp_path):
    resources.cache.set("k", {"height": 12})
    resources.database.learn_from_element("h2", 50)

    exported = client.get("/layout/snapshot").json()
    assert exported["cache"]["cache"] == {"k": {"height": 12}}
    assert exported["learned"]["headers.module-title"]["samples"] == 1

    resources.cache.clear()
    response = client.put("/layout/snapshot", json=exported)
    assert response.json() == {"cacheEntries": 1, "learnedMeasurements": 1}
    assert resources.cache.get("k") == {"height": 12}

    saved = client.post("/layout/snapshot/save").json()["saved"]
    assert len(saved) == 2
    assert all(path.startswith(str(tmp_path)) for path in saved)
