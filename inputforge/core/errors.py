from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class ForgeError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<bundle>"
        return f"{loc}: {self.code}: {self.message}"


class ValidationError(ForgeError):
    pass


class ParseError(ForgeError):
    pass


class PersistenceError(ForgeError):
    pass


class NotFoundError(PersistenceError):
    pass


class CorruptError(PersistenceError):
    pass


GatewayErrorKind = Literal["cancelled", "timeout", "rate_limited", "server", "network", "unavailable"]


@dataclass(frozen=True)
class GatewayError(ForgeError):
    kind: GatewayErrorKind = "network"
    status_code: Optional[int] = None
    retry_after: Optional[float] = None

    @property
    def retryable(self) -> bool:
        if self.kind in ("timeout", "rate_limited", "network"):
            return True
        if self.kind == "server":
            return self.status_code is not None and self.status_code >= 500
        return False


def gateway_error(kind: GatewayErrorKind, message: str, **kw) -> GatewayError:
    return GatewayError(code=f"E_GATEWAY_{kind.upper()}", message=message, kind=kind, **kw)
