from .schemas import (
    AgentDecisionLog,
    ChatMessage,
    ChatRole,
    ChatState,
    ConnectionSession,
    Contract,
    FiscalInvoice,
    Invoice,
    SessionCredentials,
    ToolCall,
    ToolCallRecord,
    ToolResult,
    TrafficExtract,
)

__all__ = [
    "AgentDecisionLog",
    "ChatMessage",
    "ChatRole",
    "ChatState",
    "ConnectionSession",
    "Contract",
    "FiscalInvoice",
    "Invoice",
    "SessionCredentials",
    "ToolCall",
    "ToolCallRecord",
    "ToolResult",
    "TrafficExtract",
]
