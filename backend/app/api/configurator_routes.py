"""Configurator API routes — sessions, package selection, parameters, overrides, totals."""
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from app.config import MAX_SESSIONS, SESSION_IDLE_TTL
from app.db import AsyncSessionLocal
from app.db.catalog_repository import SqlCatalogProvider
from app.models.configurator_schema import SessionState
from app.services.catalog_engine import ConfigurationUnavailable
from app.services.configurator_session import (
    ConfiguratorSession,
    UnknownInstanceError,
    UnknownItemError,
    UnknownPackageError,
)

router = APIRouter(prefix="/api/configurator", tags=["Configurator"])
logger = logging.getLogger("elektro-api")

# In-process session registry keyed by session id, with last access time
_SESSIONS: Dict[str, ConfiguratorSession] = {}
_LAST_SEEN: Dict[str, float] = {}


def get_provider():
    """Catalog/rates/price/location provider backed by the offers_* tables."""
    return SqlCatalogProvider(AsyncSessionLocal)


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class SessionCreate(BaseModel):
    location_id: Optional[str] = None


class PackageSelect(BaseModel):
    package_id: int


class ValueUpdate(BaseModel):
    value: Any = None


class LocationUpdate(BaseModel):
    location_id: str


class ProductSwap(BaseModel):
    product_id: str


# ─── Helpers ─────────────────────────────────────────────────────────────────

@contextmanager
def _http_errors():
    try:
        yield
    except ConfigurationUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except (UnknownInstanceError, UnknownItemError) as e:
        raise HTTPException(status_code=404, detail=f"Not found: {e.args[0] if e.args else ''}")
    except UnknownPackageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _session(session_id: str) -> ConfiguratorSession:
    session = _SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    _LAST_SEEN[session_id] = time.time()
    return session


def _forget(session_id: str) -> None:
    _SESSIONS.pop(session_id, None)
    _LAST_SEEN.pop(session_id, None)


def _prune_sessions(now: float, idle_ttl: int = SESSION_IDLE_TTL, limit: int = MAX_SESSIONS) -> None:
    """Drop sessions idle longer than ``idle_ttl``, then the least recently used beyond ``limit``."""
    expired = [sid for sid, seen in _LAST_SEEN.items() if now - seen > idle_ttl]
    for sid in expired:
        _forget(sid)
    overflow = len(_SESSIONS) - limit
    if overflow > 0:
        for sid in sorted(_LAST_SEEN, key=_LAST_SEEN.get)[:overflow]:
            _forget(sid)
    if expired or overflow > 0:
        logger.info(f"Pruned sessions: {len(expired)} idle, {max(overflow, 0)} over limit")


def _snapshot(session: ConfiguratorSession) -> Dict[str, Any]:
    return {
        "session_id": session.session_id,
        "location_id": session.location_id,
        "global_params": session.global_params,
        "instances": [
            {"instance_id": i.instance_id, "package_id": i.package_id, "params": i.params}
            for i in session.instances()
        ],
        "line_items": [i.to_dict() for i in session.get_line_items()],
        "protection_items": [i.to_dict() for i in session.get_protection_device_items()],
        "totals": session.get_totals("global"),
        "diagnostics": [d.to_dict() for d in session.diagnostics],
    }


# ─── Sessions ────────────────────────────────────────────────────────────────

@router.post("/sessions")
async def create_session(payload: SessionCreate, provider=Depends(get_provider)):
    with _http_errors():
        session = await ConfiguratorSession.load(provider, location_id=payload.location_id)
    now = time.time()
    _SESSIONS[session.session_id] = session
    _LAST_SEEN[session.session_id] = now
    _prune_sessions(now)
    logger.info(f"Session {session.session_id} created", extra={"session_id": session.session_id})
    return _snapshot(session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _snapshot(_session(session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    _session(session_id)
    _forget(session_id)
    return {"deleted": session_id}


@router.get("/sessions/{session_id}/state")
async def get_state(session_id: str):
    return _session(session_id).to_state().model_dump()


@router.put("/sessions/{session_id}/state")
async def put_state(session_id: str, state: SessionState):
    session = _session(session_id)
    with _http_errors():
        session.apply_state(state)
    return _snapshot(session)


# ─── Catalog & parameters ────────────────────────────────────────────────────

@router.get("/sessions/{session_id}/packages")
async def list_packages(session_id: str):
    catalog = _session(session_id).catalog
    return [p.model_dump() for p in catalog.packages.values()]


@router.get("/sessions/{session_id}/parameters")
async def list_parameters(session_id: str):
    session = _session(session_id)
    return {
        "definitions": [d.model_dump() for d in session.catalog.global_parameters()],
        "values": session.global_params,
    }


@router.put("/sessions/{session_id}/params/{key}")
async def set_global_param(session_id: str, key: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_global_param(key, payload.value)
    return _snapshot(session)


@router.put("/sessions/{session_id}/location")
async def set_location(session_id: str, payload: LocationUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_location(payload.location_id)
    return _snapshot(session)


# ─── Package instances ───────────────────────────────────────────────────────

@router.post("/sessions/{session_id}/instances")
async def add_instance(session_id: str, payload: PackageSelect):
    session = _session(session_id)
    with _http_errors():
        instance_id = session.select_package(payload.package_id)
    return {"instance_id": instance_id, **_snapshot(session)}


@router.delete("/sessions/{session_id}/instances/{instance_id}")
async def remove_instance(session_id: str, instance_id: str):
    session = _session(session_id)
    with _http_errors():
        session.remove_instance(instance_id)
    return _snapshot(session)


@router.put("/sessions/{session_id}/instances/{instance_id}/params/{key}")
async def set_instance_param(session_id: str, instance_id: str, key: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_instance_param(instance_id, key, payload.value)
    return _snapshot(session)


# ─── Line items & overrides ──────────────────────────────────────────────────

@router.get("/sessions/{session_id}/line-items")
async def list_line_items(session_id: str):
    session = _session(session_id)
    return {
        "line_items": [i.to_dict() for i in session.get_line_items()],
        "protection_items": [i.to_dict() for i in session.get_protection_device_items()],
    }


@router.get("/sessions/{session_id}/line-items/{item_id}/alternatives")
async def list_alternatives(session_id: str, item_id: str):
    session = _session(session_id)
    with _http_errors():
        return [p.model_dump() for p in session.get_alternatives(item_id)]


@router.put("/sessions/{session_id}/line-items/{item_id}/price")
async def set_local_price(session_id: str, item_id: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_local_price(item_id, payload.value)
        return session.get_totals("item", item_id)


@router.put("/sessions/{session_id}/line-items/{item_id}/markup")
async def set_local_markup(session_id: str, item_id: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_local_markup(item_id, payload.value)
        return session.get_totals("item", item_id)


@router.delete("/sessions/{session_id}/line-items/{item_id}/markup")
async def reset_markup(session_id: str, item_id: str):
    session = _session(session_id)
    with _http_errors():
        session.reset_markup(item_id)
        return session.get_totals("item", item_id)


@router.put("/sessions/{session_id}/line-items/{item_id}/hours/{role}")
async def set_manual_hours(session_id: str, item_id: str, role: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_manual_hours(item_id, role, payload.value)
        return session.get_totals("item", item_id)


@router.put("/sessions/{session_id}/line-items/{item_id}/quantity")
async def set_quantity(session_id: str, item_id: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_quantity(item_id, payload.value)
    return _snapshot(session)


@router.put("/sessions/{session_id}/line-items/{item_id}/product")
async def swap_product(session_id: str, item_id: str, payload: ProductSwap):
    session = _session(session_id)
    with _http_errors():
        session.swap_product(item_id, payload.product_id)
    return _snapshot(session)


@router.delete("/sessions/{session_id}/line-items/{item_id}")
async def remove_item(session_id: str, item_id: str):
    session = _session(session_id)
    with _http_errors():
        session.remove_item(item_id)
    return _snapshot(session)


@router.put("/sessions/{session_id}/wages/{role}")
async def set_wage(session_id: str, role: str, payload: ValueUpdate):
    session = _session(session_id)
    with _http_errors():
        session.set_wage_override(role, payload.value)
    return session.effective_wages()


# ─── Totals ──────────────────────────────────────────────────────────────────

@router.get("/sessions/{session_id}/totals")
async def get_totals(
    session_id: str,
    scope: str = Query("global", description="item | category | instance | package | protection | global"),
    key: Optional[str] = Query(None, description="Item id, instance id or package id"),
):
    session = _session(session_id)
    with _http_errors():
        return session.get_totals(scope, key)


@router.get("/sessions/{session_id}/quote")
async def get_quote(session_id: str):
    return _session(session_id).get_quote_summary()
