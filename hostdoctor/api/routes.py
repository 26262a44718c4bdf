"""API routes.

Endpoints:
  GET  /api/status                 service state and rollback availability
  POST /api/scan                   start a scan (``?wait=true`` blocks until done)
  POST /api/scan/cancel            cancel the running scan or optimization
  GET  /api/scan/latest            latest completed result
  GET  /api/plan                   actions proposed for the latest result
  POST /api/optimize               run selected AutoFix actions on the latest result
  POST /api/shortcut/{action_key}  open the tool behind a Shortcut action
  GET  /api/history                stored scan snapshots
  GET  /api/history/changes        metrics that changed since the previous scan
  GET  /api/rollback               journaled values awaiting restore
  POST /api/rollback/restore       restore every journaled value
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from hostdoctor.diagnostics.result import jsonable
from hostdoctor.history.store import changed, compare
from hostdoctor.optimize.actions import ActionType
from hostdoctor.optimize.remediations import UnknownActionError
from hostdoctor.service import HostDoctor, NoScanError, ScanInProgressError

logger = logging.getLogger(__name__)

router = APIRouter()


class OptimizeRequest(BaseModel):
    select: list[str] | None = None  # action keys; None keeps the planner defaults
    verify: bool = True


def _doctor(request: Request) -> HostDoctor:
    return request.app.state.doctor


def _latest(doctor: HostDoctor):
    try:
        return doctor.require_latest()
    except NoScanError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/status")
def status(request: Request) -> dict[str, Any]:
    doctor = _doctor(request)
    latest = doctor.latest
    remediated = doctor.timestamps.latest()
    return {
        "busy": doctor.busy,
        "has_result": latest is not None,
        "health_score": latest.health_score if latest else None,
        "last_scan": latest.timestamp.isoformat() if latest else None,
        "has_rollback": doctor.has_rollback(),
        "last_remediation": remediated.isoformat() if remediated else None,
    }


@router.post("/scan")
async def start_scan(request: Request, wait: bool = False) -> dict[str, Any]:
    doctor = _doctor(request)
    if not wait:
        if not doctor.start_scan():
            raise HTTPException(status_code=409, detail="A scan is already in progress")
        return {"status": "started"}

    try:
        result = await asyncio.to_thread(doctor.scan)
    except ScanInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if result is None:
        return {"status": "cancelled"}
    return {"status": "completed", "result": result.to_dict()}


@router.post("/scan/cancel")
def cancel_scan(request: Request) -> dict[str, Any]:
    return {"cancelled": _doctor(request).cancel()}


@router.get("/scan/latest")
def latest_scan(request: Request) -> dict[str, Any]:
    return _latest(_doctor(request)).to_dict()


@router.get("/plan")
def plan(request: Request) -> dict[str, Any]:
    doctor = _doctor(request)
    actions = doctor.plan(_latest(doctor))
    return {"actions": jsonable(actions)}


@router.post("/optimize")
async def optimize(body: OptimizeRequest, request: Request) -> dict[str, Any]:
    doctor = _doctor(request)
    result = _latest(doctor)
    if doctor.busy:
        raise HTTPException(status_code=409, detail="A scan or optimization is already running")

    actions = doctor.plan(result)
    if body.select is not None:
        known = {a.action_key for a in actions}
        unknown = [k for k in body.select if k not in known]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown action key(s): {', '.join(unknown)}")
        wanted = set(body.select)
        for action in actions:
            if action.type == ActionType.AUTO_FIX:
                action.is_selected = action.action_key in wanted

    try:
        summary = await asyncio.to_thread(doctor.optimize, result, actions, body.verify)
    except ScanInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"summary": jsonable(summary), "actions": jsonable(actions)}


@router.post("/shortcut/{action_key:path}")
def open_shortcut(action_key: str, request: Request) -> dict[str, Any]:
    doctor = _doctor(request)
    result = _latest(doctor)
    try:
        outcome = doctor.open_shortcut(action_key, result)
    except UnknownActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"opened": action_key, "result": jsonable(outcome)}


@router.get("/history")
def history(request: Request) -> dict[str, Any]:
    snapshots = _doctor(request).history.load()
    return {"snapshots": [s.to_dict() for s in snapshots]}


@router.get("/history/changes")
def history_changes(request: Request) -> dict[str, Any]:
    snapshots = _doctor(request).history.load()
    if len(snapshots) < 2:
        return {"changes": []}
    return {"changes": jsonable(changed(compare(snapshots[-2], snapshots[-1])))}


@router.get("/rollback")
def rollback(request: Request) -> dict[str, Any]:
    entries = _doctor(request).journal.load_entries()
    return {"entries": [e.to_dict() for e in entries]}


@router.post("/rollback/restore")
def restore(request: Request) -> dict[str, Any]:
    doctor = _doctor(request)
    if doctor.busy:
        raise HTTPException(status_code=409, detail="A scan or optimization is already running")
    results = doctor.restore()
    return {"results": jsonable(results)}
