"""FastAPI application for uploading policy files and reading the report."""

from __future__ import annotations

from threading import Lock
from typing import Any, Awaitable, Callable, Mapping

import structlog
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from apps.policycheck.config import load_settings
from apps.policycheck.version import POLICYCHECK_VERSION
from libraries.reconcile.comparator import ReconciliationResult
from libraries.reconcile.errors import ParseError, RuleStoreError
from libraries.reconcile.report import (
    DEFAULT_REPORT_NAME,
    render_csv,
    select_records,
)
from libraries.reconcile.rules import RuleKind, dump_rules
from libraries.reconcile.session import ReconciliationSession, Side

logger = structlog.get_logger(__name__)

_SESSION: ReconciliationSession | None = None
_SESSION_LOCK = Lock()


def get_session() -> ReconciliationSession:  # pragma: no cover - runtime wiring
    """Return the process-wide session configured from the active profile."""

    global _SESSION
    with _SESSION_LOCK:
        if _SESSION is None:
            settings = load_settings()
            _SESSION = ReconciliationSession(
                settings.rule_repository(),
                options=settings.match_options(),
                max_header_rows=settings.header_scan_limit,
            )
        return _SESSION


def _summary_payload(result: ReconciliationResult | None) -> Mapping[str, Any] | None:
    if result is None:
        return None
    summary = result.summary
    return {
        "total_incoming": summary.total_incoming,
        "mismatched": summary.mismatched,
        "not_found": summary.not_found,
        "matched": summary.matched,
    }


app = FastAPI(title="policycheck", version=POLICYCHECK_VERSION)


@app.middleware("http")
async def log_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    logger.info("policycheck.request.start", method=request.method, path=request.url.path)
    response = await call_next(request)
    logger.info(
        "policycheck.request.complete",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
    )
    return response


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/uploads/{side}")
async def upload(
    side: Side,
    request: Request,
    session: ReconciliationSession = Depends(get_session),
) -> dict[str, Any]:
    """Replace one side with the raw CSV in the request body."""

    payload = await request.body()
    try:
        outcome = await run_in_threadpool(session.upload, side, payload)
    except ParseError as exc:
        logger.warning("policycheck.upload.rejected", side=side.value, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuleStoreError as exc:
        logger.error("policycheck.upload.rules_unavailable", side=side.value, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "side": outcome.side.value,
        "records": outcome.record_count,
        "header_index": outcome.header_index,
        "warnings": [str(warning) for warning in outcome.warnings],
        "summary": _summary_payload(outcome.result),
    }


@app.get("/report")
def report(
    show_matches: bool = Query(False),
    session: ReconciliationSession = Depends(get_session),
) -> dict[str, Any]:
    result = session.result
    records = select_records(result, show_matches=show_matches) if result else []
    return {
        "summary": _summary_payload(result),
        "unmatched_keys": list(result.unmatched_keys) if result else [],
        "records": [
            record.model_dump(mode="json", by_alias=True) for record in records
        ],
    }


@app.get("/report.csv")
def report_csv(
    show_matches: bool = Query(False),
    session: ReconciliationSession = Depends(get_session),
) -> Response:
    result = session.result
    records = select_records(result, show_matches=show_matches) if result else []
    return Response(
        content=render_csv(records),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{DEFAULT_REPORT_NAME}"'
        },
    )


@app.get("/rules/{kind}")
def get_rules(
    kind: RuleKind,
    session: ReconciliationSession = Depends(get_session),
) -> list[dict[str, Any]]:
    try:
        return dump_rules(session.repository.load(kind))
    except RuleStoreError as exc:
        logger.error("policycheck.rules.load_failed", kind=kind.value, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.put("/rules/{kind}")
def put_rules(
    kind: RuleKind,
    rules: list[dict[str, Any]] = Body(...),
    session: ReconciliationSession = Depends(get_session),
) -> list[dict[str, Any]]:
    """Replace the rules for *kind* and recompute the current report."""

    try:
        saved = session.repository.save(kind, rules)
    except RuleStoreError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    try:
        session.refresh()
    except RuleStoreError as exc:
        logger.error("policycheck.rules.refresh_failed", kind=kind.value, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return dump_rules(saved)


__all__ = ["app", "get_session"]
