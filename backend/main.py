from __future__ import annotations

import logging
import re
import time
import uuid
from contextlib import AbstractContextManager
from typing import Any, Callable, Literal, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from config import load_settings
from layout.calculation_engine import mark_calculation_failed, precalculate_layout
from layout.pagination import OversizedElementError
from layout.probes import EstimatingProbe, LayoutProbe, browser_probe, host_document
from layout.report_layout import prepare_report_data
from layout.resources import LayoutResources, create_resources
from models import LayoutSnapshot, MeasureRequest, MeasurementReport

_LOG = logging.getLogger("uvicorn.error")

SETTINGS = load_settings()

app = FastAPI(title="Report Layout Backend", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    """The caller's X-Request-Id when it is a safe token, else a fresh short id."""
    inbound = request.headers.get("X-Request-Id", "")
    if _REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return str(uuid.uuid4())[:8]


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = _request_id(request)
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        _LOG.info(
            "LAYOUT_REQUEST rid=%s %s %s status=%s ms=%.0f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestLogMiddleware)


def get_resources(request: Request) -> LayoutResources:
    resources: Optional[LayoutResources] = getattr(request.app.state, "resources", None)
    if resources is None:
        resources = create_resources(SETTINGS)
        request.app.state.resources = resources
    return resources


ProbeFactory = Callable[[Optional[str]], AbstractContextManager[LayoutProbe]]


def get_probe_factory() -> ProbeFactory:
    """Headless Chromium probes; overridden in tests."""
    return browser_probe


def _runtime_unavailable(exc: Exception) -> HTTPException:
    msg = str(exc)
    if len(msg) > 500:
        msg = msg[:500]
    return HTTPException(status_code=503, detail=f"Playwright runtime unavailable: {msg}")


@app.on_event("startup")
def startup_log() -> None:
    app.state.resources = create_resources(SETTINGS)
    _LOG.info(
        "Layout backend starting version=%s oversize_policy=%s phantom=%s cache_ttl=%s",
        app.version, SETTINGS.oversize_policy, SETTINGS.phantom_enabled, SETTINGS.cache_ttl_seconds,
    )


@app.on_event("shutdown")
def shutdown_resources() -> None:
    resources: Optional[LayoutResources] = getattr(app.state, "resources", None)
    if resources is not None:
        resources.close()


@app.get("/health")
def health(resources: LayoutResources = Depends(get_resources)):
    return {
        "status": "ok",
        "version": app.version,
        "oversize_policy": resources.settings.oversize_policy,
        "cache_size": len(resources.cache),
    }


_HEALTH_DOCUMENT = (
    '<!doctype html><html><body><div class="module"><h2>Salud</h2><p>Documento de prueba</p></div></body></html>'
)


@app.get("/health/pdf")
def health_pdf(probe_factory: ProbeFactory = Depends(get_probe_factory)):
    """
    Post-render measurement check: loads a one-module document into the
    measurement browser and snapshots it exactly as /layout/measure does.
    503 when the browser cannot start or the snapshot finds no module.
    """
    try:
        with probe_factory(_HEALTH_DOCUMENT) as probe:
            snapshot = probe.snapshot_document()
    except ImportError as e:
        raise HTTPException(status_code=503, detail="Playwright is not installed.") from e
    except Exception as e:
        raise _runtime_unavailable(e) from e

    modules = sum(1 for box in snapshot.elements if box.kind == "module")
    if modules == 0:
        raise HTTPException(status_code=503, detail="Measurement browser found no modules in the check document.")
    return {"status": "ok", "browser": "ready", "modules_seen": modules}


@app.post("/layout/prepare")
def layout_prepare(
    payload: dict[str, Any] = Body(...),
    resources: LayoutResources = Depends(get_resources),
):
    return prepare_report_data(payload, resources.settings)


@app.post("/layout/precalculate")
def layout_precalculate(
    request: Request,
    payload: dict[str, Any] = Body(...),
    probe: Literal["estimate", "browser"] = Query("estimate"),
    resources: LayoutResources = Depends(get_resources),
    probe_factory: ProbeFactory = Depends(get_probe_factory),
):
    rid = getattr(request.state, "request_id", "")
    data = prepare_report_data(payload, resources.settings)
    if not resources.settings.phantom_enabled:
        _LOG.info("PRECALC_SKIPPED rid=%s phantom disabled", rid)
        return data

    _LOG.info("PRECALC_START rid=%s probe=%s", rid, probe)
    if probe == "estimate":
        engine = resources.calculation_engine(EstimatingProbe(resources.database))
        return precalculate_layout(data, engine)

    # Browser trouble only costs the pagination hints; the report still renders.
    try:
        with probe_factory(host_document(data.get("styles"))) as browser:
            return precalculate_layout(data, resources.calculation_engine(browser))
    except ImportError:
        _LOG.warning("PRECALC_DEGRADED rid=%s playwright not installed", rid)
        return mark_calculation_failed(data, "Playwright is not installed.")
    except Exception as e:
        _LOG.warning("PRECALC_DEGRADED rid=%s err=%s", rid, str(e)[:400], exc_info=True)
        return mark_calculation_failed(data, f"Playwright runtime unavailable: {str(e)[:500]}")


@app.post("/layout/measure", response_model=MeasurementReport)
def layout_measure(
    request: Request,
    body: MeasureRequest,
    resources: LayoutResources = Depends(get_resources),
    probe_factory: ProbeFactory = Depends(get_probe_factory),
):
    rid = getattr(request.state, "request_id", "")
    _LOG.info("MEASURE_REQUEST rid=%s html_len=%s", rid, len(body.html))
    try:
        with probe_factory(body.html) as probe:
            report = resources.measurement_service(probe).initialize()
    except OversizedElementError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except ImportError as e:
        raise HTTPException(status_code=503, detail="Playwright is not installed.") from e
    except Exception as e:
        _LOG.error("MEASURE_ERR rid=%s err=%s", rid, str(e)[:400], exc_info=True)
        raise _runtime_unavailable(e) from e
    return report


@app.get("/layout/cache/stats")
def layout_cache_stats(resources: LayoutResources = Depends(get_resources)):
    return resources.cache.get_stats()


@app.get("/layout/snapshot", response_model=LayoutSnapshot)
def layout_snapshot_export(resources: LayoutResources = Depends(get_resources)):
    return LayoutSnapshot(**resources.export_snapshot())


@app.put("/layout/snapshot")
def layout_snapshot_import(
    snapshot: LayoutSnapshot,
    resources: LayoutResources = Depends(get_resources),
):
    return resources.import_snapshot(snapshot.model_dump())


@app.post("/layout/snapshot/save")
def layout_snapshot_save(resources: LayoutResources = Depends(get_resources)):
    paths = resources.save_snapshots()
    return {"saved": [str(p) for p in paths]}
