from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from api.http_errors import gateway_http_error
from tools.connection_matcher import match_connection
from tools.errors import SGPError
from tools.sgp_gateway import ExternalApiGateway


router = APIRouter(prefix="/portal", tags=["portal"])


class LoginRequest(BaseModel):
    tax_id: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ContractRequest(LoginRequest):
    contract_id: str = Field(min_length=1)


class TrafficRequest(ContractRequest):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)


def _gateway(request: Request) -> ExternalApiGateway:
    return request.app.state.gateway


@router.post("/login")
async def login(payload: LoginRequest, request: Request):
    try:
        contracts = await _gateway(request).authenticate(payload.tax_id, payload.password)
    except SGPError as exc:
        raise gateway_http_error(exc) from exc
    return {"contracts": [c.model_dump(mode="json") for c in contracts]}


@router.post("/invoices")
async def invoices(payload: ContractRequest, request: Request):
    rows = await _gateway(request).list_invoices(payload.tax_id, payload.password, payload.contract_id)
    return {"contract_id": payload.contract_id, "invoices": [i.model_dump(mode="json") for i in rows]}


@router.get("/fiscal-invoices/{contract_id}")
async def fiscal_invoices(contract_id: str, request: Request):
    rows = await _gateway(request).list_fiscal_invoices(contract_id)
    return {"contract_id": contract_id, "fiscal_invoices": [i.model_dump(mode="json") for i in rows]}


@router.post("/traffic")
async def traffic(payload: TrafficRequest, request: Request):
    extract = await _gateway(request).fetch_traffic(
        payload.tax_id, payload.password, payload.contract_id, payload.month, payload.year
    )
    if extract is None:
        raise HTTPException(status_code=404, detail="traffic_unavailable")
    return extract.model_dump(mode="json")


@router.post("/connection")
async def connection(payload: ContractRequest, request: Request):
    gateway = _gateway(request)
    try:
        contracts = await gateway.authenticate(payload.tax_id, payload.password)
        sessions = await gateway.list_connection_sessions(payload.tax_id, payload.password, payload.contract_id)
    except SGPError as exc:
        raise gateway_http_error(exc) from exc
    contract = next((c for c in contracts if c.contract_id == payload.contract_id), None)
    if contract is None:
        raise HTTPException(status_code=404, detail="contract_not_found")
    matched: Optional[dict] = None
    session = match_connection(contract, sessions)
    if session is not None:
        matched = session.model_dump(mode="json")
    return {"contract_id": contract.contract_id, "connection": matched, "sessions": [s.model_dump(mode="json") for s in sessions]}


@router.post("/unlock")
async def unlock(payload: ContractRequest, request: Request):
    try:
        verdict = await _gateway(request).request_trust_unlock(payload.tax_id, payload.password, payload.contract_id)
    except SGPError as exc:
        raise gateway_http_error(exc) from exc
    return {"contract_id": payload.contract_id, "result": verdict}
