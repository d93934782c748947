"""Market intelligence router: intake, worker trigger and request polling."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from models.research_request import RESEARCH_STATUS_COMPLETED, ResearchRequest
from models.research_result import ResearchResult
from routers.auth_scope import AuthContext, auth_scheme, bearer_token, get_auth_context
from routers.rate_limit import rate_limit
from services.research_intake import ResearchRequestCreate, submit_research_request
from services.research_store import get_research_request, get_research_result, list_research_requests
from services.research_worker import run_research_cycle

router = APIRouter()

HISTORY_LIMIT = 50


class ResearchRequestCreated(BaseModel):
    request_id: str


class ResearchRequestResponse(BaseModel):
    request_id: str
    platform: str
    timeframe_days: int
    competitors: List[str]
    status: str
    attempts: int
    client_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


def _competitor_urls(entries: Any) -> List[str]:
    urls = []
    for entry in entries or []:
        if isinstance(entry, str):
            urls.append(entry)
        elif isinstance(entry, dict):
            urls.append(str(entry.get("source_url") or entry.get("url") or ""))
    return urls


def _serialize_request(request: ResearchRequest) -> ResearchRequestResponse:
    return ResearchRequestResponse(
        request_id=request.id,
        platform=request.platform,
        timeframe_days=int(request.timeframe_days),
        competitors=_competitor_urls(request.competitors),
        status=request.status,
        attempts=int(request.attempts or 0),
        client_id=request.client_id,
        error_message=request.error_message,
        created_at=request.created_at.isoformat() if request.created_at else None,
        started_at=request.started_at.isoformat() if request.started_at else None,
        completed_at=request.completed_at.isoformat() if request.completed_at else None,
    )


def _serialize_result(result: ResearchResult) -> Dict[str, Any]:
    return {
        "request_id": result.request_id,
        "resumen_ejecutivo": result.resumen_ejecutivo,
        "patrones_dominantes": result.patrones_dominantes or [],
        "frameworks_de_ganchos": result.frameworks_de_ganchos or [],
        "analisis_de_posicionamiento": result.analisis_de_posicionamiento,
        "nivel_de_sofisticacion_del_mercado": result.nivel_de_sofisticacion_del_mercado,
        "nivel_de_saturacion": result.nivel_de_saturacion,
        "brechas_de_mercado": result.brechas_de_mercado or [],
        "oportunidades_estrategicas": result.oportunidades_estrategicas or [],
        "angulos_de_contenido_recomendados": result.angulos_de_contenido_recomendados or [],
        "estructuras_de_storytelling": result.estructuras_de_storytelling or [],
        "analisis_por_video": result.analisis_por_video,
        "created_at": result.created_at.isoformat() if result.created_at else None,
    }


async def _owned_request(request_id: str, auth: AuthContext) -> ResearchRequest:
    request = await get_research_request(request_id)
    if request is None or request.user_id != auth.user_id:
        raise HTTPException(status_code=404, detail="Research request not found.")
    return request


@router.post("/research-requests", response_model=ResearchRequestCreated)
@router.post("/create-request", response_model=ResearchRequestCreated, include_in_schema=False)
async def create_request(
    payload: ResearchRequestCreate,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    _rate_limit: None = Depends(rate_limit("research_request_create", limit=20, window_seconds=3600)),
):
    """Validate and persist a research request, then wake a worker."""
    request_id = await submit_research_request(payload, bearer_token=bearer_token(credentials))
    return ResearchRequestCreated(request_id=request_id)


@router.post("/worker/run", response_class=PlainTextResponse)
async def run_worker_cycle():
    """Run one worker cycle in-process and report its outcome as plain text."""
    result = await run_research_cycle()
    return PlainTextResponse(result.message, status_code=result.status_code)


@router.get("/requests", response_model=List[ResearchRequestResponse])
async def list_requests(auth: AuthContext = Depends(get_auth_context)):
    requests = await list_research_requests(auth.user_id, limit=HISTORY_LIMIT)
    return [_serialize_request(request) for request in requests]


@router.get("/requests/latest", response_model=ResearchRequestResponse)
async def latest_request(auth: AuthContext = Depends(get_auth_context)):
    requests = await list_research_requests(auth.user_id, limit=1)
    if not requests:
        raise HTTPException(status_code=404, detail="No research requests yet.")
    return _serialize_request(requests[0])


@router.get("/requests/{request_id}", response_model=ResearchRequestResponse)
async def get_request(request_id: str, auth: AuthContext = Depends(get_auth_context)):
    return _serialize_request(await _owned_request(request_id, auth))


@router.get("/requests/{request_id}/result")
async def get_request_result(request_id: str, auth: AuthContext = Depends(get_auth_context)):
    """Report sections of a completed request."""
    request = await _owned_request(request_id, auth)
    if request.status != RESEARCH_STATUS_COMPLETED:
        raise HTTPException(status_code=409, detail=f"Research request is {request.status}.")
    result = await get_research_result(request_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Research result not found.")
    return _serialize_result(result)
