from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from models.schemas import ConnectionSession, Contract, FiscalInvoice, Invoice, TrafficExtract
from settings import SETTINGS
from tools.errors import AuthError, SGPError, TransportError
from tools.formatting import digits_only
from tools.normalizer import (
    normalize_connection_sessions,
    normalize_contracts,
    normalize_fiscal_invoices,
    normalize_invoices,
    normalize_traffic,
    raise_for_backend_error,
)

logger = logging.getLogger(__name__)


class ExternalApiGateway:
    """Transport for the SGP subscriber, radius and ticketing APIs.

    Holds only read-only configuration, so one instance can serve every
    conversation. The legacy subscriber API takes multipart form fields; the
    radius and ticketing APIs take a JSON body carrying the static app/token
    pair. Trust unlock and ticket opening have side effects and are never
    retried here.
    """

    def __init__(
        self,
        base_url: str | None = None,
        radius_url: str | None = None,
        ticket_url: str | None = None,
        app_name: str | None = None,
        app_token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or SETTINGS.sgp_base_url).rstrip("/")
        self.radius_url = radius_url or SETTINGS.sgp_radius_url
        self.ticket_url = ticket_url or SETTINGS.sgp_ticket_url
        self.app_name = app_name if app_name is not None else SETTINGS.sgp_app_name
        self.app_token = app_token if app_token is not None else SETTINGS.sgp_app_token
        self.timeout_seconds = timeout_seconds or SETTINGS.sgp_timeout_seconds
        self.transport = transport

    async def _post(
        self,
        operation: str,
        url: str,
        form: Dict[str, Any] | None = None,
        body: Dict[str, Any] | None = None,
    ) -> Any:
        kwargs: Dict[str, Any] = {}
        if form is not None:
            kwargs["files"] = {key: (None, str(value)) for key, value in form.items()}
        if body is not None:
            kwargs["json"] = body
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("sgp_request_failed", extra={"operation": operation, "error": repr(exc)})
            raise TransportError(f"{operation}: {exc}") from exc
        if not resp.is_success:
            logger.warning("sgp_http_error", extra={"operation": operation, "status_code": resp.status_code})
            raise TransportError(f"{operation}: HTTP {resp.status_code} {resp.reason_phrase}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"{operation}: invalid JSON body") from exc

    def _service_credentials(self) -> Dict[str, str]:
        return {"app": self.app_name, "token": self.app_token}

    async def authenticate(self, tax_id: str, password: str) -> List[Contract]:
        payload = await self._post("contratos", f"{self.base_url}/contratos", form={"cpfcnpj": tax_id, "senha": password})
        contracts = normalize_contracts(payload, fallback_tax_id=tax_id)
        if not contracts:
            raise AuthError("no contracts found for these credentials")
        logger.info("sgp_authenticated", extra={"contracts": len(contracts)})
        return contracts

    async def fetch_invoices(self, tax_id: str, password: str, contract_id: str | int | None) -> List[Invoice]:
        """Invoices for a contract; raises ``TransportError``/``DomainError`` when SGP fails."""
        if not contract_id or str(contract_id) == "0":
            return []
        payload = await self._post(
            "titulos",
            f"{self.base_url}/titulos/",
            form={"cpfcnpj": tax_id, "senha": password, "contrato": contract_id},
        )
        raise_for_backend_error(payload)
        return normalize_invoices(payload)

    async def list_invoices(self, tax_id: str, password: str, contract_id: str | int | None) -> List[Invoice]:
        try:
            return await self.fetch_invoices(tax_id, password, contract_id)
        except SGPError as exc:
            logger.warning("sgp_invoices_failed", extra={"contract_id": str(contract_id), "error": str(exc)})
            return []

    async def list_fiscal_invoices(self, contract_id: str | int) -> List[FiscalInvoice]:
        try:
            payload = await self._post(
                "notafiscal",
                f"{self.base_url}/notafiscal/list/",
                form={**self._service_credentials(), "contrato": contract_id},
            )
        except SGPError as exc:
            logger.warning("sgp_fiscal_invoices_failed", extra={"contract_id": str(contract_id), "error": str(exc)})
            return []
        return normalize_fiscal_invoices(payload)

    async def fetch_traffic(
        self,
        tax_id: str,
        password: str,
        contract_id: str | int,
        month: int,
        year: int,
    ) -> Optional[TrafficExtract]:
        try:
            payload = await self._post(
                "extratouso",
                f"{self.base_url}/extratouso/",
                form={
                    "cpfcnpj": tax_id,
                    "senha": password,
                    "contrato": contract_id,
                    "ano": str(year),
                    "mes": f"{int(month):02d}",
                },
            )
        except SGPError as exc:
            logger.warning("sgp_traffic_failed", extra={"contract_id": str(contract_id), "error": str(exc)})
            return None
        return normalize_traffic(payload, str(contract_id), int(month), int(year))

    async def list_connection_sessions(
        self,
        tax_id: str,
        password: str | None = None,
        contract_id: str | int | None = None,
    ) -> List[ConnectionSession]:
        # password/contract_id are accepted for symmetry; the radius API keys on the tax id only.
        payload = await self._post(
            "radacct",
            self.radius_url,
            body={**self._service_credentials(), "tipoconexao": "ppp", "cpfcnpj": digits_only(tax_id)},
        )
        return normalize_connection_sessions(payload)

    async def request_trust_unlock(self, tax_id: str, password: str, contract_id: str | int) -> Dict[str, Any]:
        payload = await self._post(
            "promessapagamento",
            f"{self.base_url}/promessapagamento/",
            form={"cpfcnpj": tax_id, "senha": password, "contrato": contract_id},
        )
        logger.info("sgp_trust_unlock_requested", extra={"contract_id": str(contract_id)})
        return payload

    async def open_ticket(
        self,
        tax_id: str,
        password: str | None,
        contract_id: str | int,
        description: str,
        contact_name: str,
        contact_phone: str,
        category_id: str | int,
    ) -> Dict[str, Any]:
        payload = await self._post(
            "chamado",
            self.ticket_url,
            body={
                **self._service_credentials(),
                "contrato": contract_id,
                "ocorrenciatipo": category_id,
                "conteudo": description,
                "observacao": f"Contato: {contact_name} | Tel: {contact_phone}",
                "notificar_cliente": 1,
            },
        )
        logger.info("sgp_ticket_opened", extra={"contract_id": str(contract_id), "category_id": str(category_id)})
        return payload
