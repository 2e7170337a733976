from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(str, Enum):
    USER = "user"
    MODEL = "model"


class ChatState(str, Enum):
    IDLE = "IDLE"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    AWAITING_MODEL = "AWAITING_MODEL"
    DISPATCHING_TOOLS = "DISPATCHING_TOOLS"
    CLOSED = "CLOSED"


class Contract(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract_id: str
    customer_id: str = ""
    customer_name: str = ""
    tax_id: str = ""
    status: str = ""
    registered_at: str = ""
    street: str = ""
    number: str = ""
    district: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    plan_name: str = ""
    monthly_value: float = 0.0

    @property
    def address_line(self) -> str:
        street = self.street or "Endereço não informado"
        line = f"{street}, {self.number or 'S/N'}"
        if self.district:
            line += f" - {self.district}"
        if self.city or self.state:
            line += f", {self.city}/{self.state}"
        return line


class Invoice(BaseModel):
    invoice_id: str
    due_date: str = ""
    updated_due_date: str = ""
    amount: float = 0.0
    adjusted_amount: float = 0.0
    paid_amount: float = 0.0
    payment_date: Optional[str] = None
    status: str = ""
    barcode_line: str = ""
    pix_code: str = ""
    boleto_link: str = ""
    receipt_link: str = ""
    description: str = ""

    def is_open(self) -> bool:
        status = self.status.lower()
        return "pago" not in status and "liquidado" not in status and not self.payment_date


class FiscalInvoice(BaseModel):
    number: str = ""
    series: str = ""
    issued_at: str = ""
    total_value: float = 0.0
    pdf_link: str = ""
    company_name: str = ""
    status: str = ""
    description: str = ""


class TrafficExtract(BaseModel):
    contract_id: str
    month: int
    year: int
    data: Dict[str, Any] = Field(default_factory=dict)


class ConnectionSession(BaseModel):
    username: str = ""
    pppoe_login: str = ""
    online: bool = False
    ip: str = ""
    framed_ip: str = ""
    nas_ip: str = ""
    mac: str = ""
    session_start: str = ""
    session_stop: Optional[str] = None
    input_octets: int = 0
    output_octets: int = 0
    terminate_cause: Optional[str] = None
    session_id: str = ""
    # Matching hints copied from the owning service record; not for display.
    plan_name: str = Field(default="", exclude=True)
    street: str = Field(default="", exclude=True)


class ChatMessage(BaseModel):
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: ChatRole
    text: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ToolCall(BaseModel):
    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    call_id: str
    name: str
    result: Any = None

    @property
    def failed(self) -> bool:
        return isinstance(self.result, dict) and "error" in self.result


class SessionCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    tax_id: str
    password: Optional[str] = None
    contract_id: str = ""


class ToolCallRecord(BaseModel):
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result_summary: str = ""
    success: bool = True
    duration_ms: int = 0


class AgentDecisionLog(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: str
    agent: str
    action: str
    reasoning: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    duration_ms: int = 0
    outcome: str = "ok"
