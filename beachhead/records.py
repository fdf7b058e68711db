from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .errors import ParseError


class Scheme(Enum):
    HTTP = "http"
    HTTPS = "https"

    @property
    def default_port(self) -> int:
        return 80 if self is Scheme.HTTP else 443


_ID_RE = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class PortMapping:
    scheme: Scheme
    port: int


@dataclass(frozen=True)
class ServiceDeclaration:
    """Raw declaration found on one container during a tick."""

    container_id: str
    raw: str | None
    container_name: str | None = None
    host: str | None = None

    @property
    def label(self) -> str:
        return self.container_name or self.container_id


@dataclass(frozen=True)
class ServiceRecord:
    domain: str
    mappings: tuple[PortMapping, ...]
    host: str | None = None
    container: str | None = None

    @property
    def spec_id(self) -> str:
        return _ID_RE.sub("_", self.domain)

    @property
    def schemes(self) -> tuple[Scheme, ...]:
        return tuple(m.scheme for m in self.mappings)

    def port_for(self, scheme: Scheme) -> int | None:
        for m in self.mappings:
            if m.scheme is scheme:
                return m.port
        return None


def publication_key(prefix: str, domain: str, scheme: Scheme) -> str:
    """Store key for one (domain, scheme) pair; stable across ticks."""
    return f"{prefix}{domain}:{scheme.value}"


@dataclass(frozen=True)
class ParseResult:
    records: tuple[ServiceRecord, ...] = ()
    errors: tuple[ParseError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors
