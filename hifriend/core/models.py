"""Data models for the session supervisor.

Session states hold live OS resources (processes, sockets) and are plain
dataclasses. Data parsed from the server uses Pydantic for validation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from hifriend.core.client import ProtocolClient
    from hifriend.core.transport import Transport
    from hifriend.process.launcher import ServerProcess


@dataclass(frozen=True)
class WorkspaceFolder:
    """A project root managed by the host environment.

    Hashable; used as the key of the session map.
    """

    path: Path
    name: str
    scheme: str = "file"

    @classmethod
    def from_path(cls, path: str | Path) -> WorkspaceFolder:
        resolved = Path(path).expanduser().resolve()
        return cls(path=resolved, name=resolved.name or str(resolved))

    @property
    def uri(self) -> str:
        return self.path.as_uri()


# --- Session states ---


@dataclass
class Invoking:
    """A version-probe or handshake process is in flight.

    process is None only while the probe process is being spawned.
    """

    folder: WorkspaceFolder
    session_id: str
    process: ServerProcess | None = None
    kind: Literal["invoking"] = "invoking"


@dataclass
class Running:
    """A protocol client is attached to a live transport."""

    folder: WorkspaceFolder
    session_id: str
    client: ProtocolClient
    transport: Transport
    version: str = ""
    kind: Literal["running"] = "running"


SessionState = Invoking | Running


# --- Handshake ---


class HandshakeAddress(BaseModel):
    """Address record printed by `hi-friend --lsp`."""

    host: str
    port: int = Field(..., ge=0, le=65535)
    pid: int


@dataclass
class HandshakeRecord:
    """Where to connect, plus the action that stops the server."""

    host: str
    port: int
    pid: int
    stop: Callable[[], None] = field(repr=False)


# --- Client options ---


class DocumentFilter(BaseModel):
    """Selects the documents the protocol client sends to the server."""

    scheme: str = "file"
    language: str | None = None
    pattern: str | None = None


@dataclass
class ClientOptions:
    """Everything the protocol client needs besides the transport."""

    folder: WorkspaceFolder
    version: str
    document_selector: list[DocumentFilter]
    trace_logger: logging.Logger | None = None
    trace_level: str = "off"
