from __future__ import annotations


class SGPError(RuntimeError):
    pass


class TransportError(SGPError):
    """Non-2xx response, unreadable body or network failure."""


class AuthError(SGPError):
    """Credentials resolved to zero contracts."""


class DomainError(SGPError):
    """The backend answered with an explicit ``erro``/``error`` field."""


class ToolExecutionError(RuntimeError):
    pass
