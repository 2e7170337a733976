from .connection_matcher import match_connection
from .errors import AuthError, DomainError, SGPError, ToolExecutionError, TransportError
from .sgp_gateway import ExternalApiGateway

__all__ = [
    "AuthError",
    "DomainError",
    "ExternalApiGateway",
    "SGPError",
    "ToolExecutionError",
    "TransportError",
    "match_connection",
]
