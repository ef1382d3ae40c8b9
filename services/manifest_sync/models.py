from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

Manifest = dict[str, dict[str, Any]]


@dataclass(frozen=True)
class Token:
    id: str
    token_id: int
    invocation: int

    @property
    def manifest_key(self) -> str:
        return str(self.invocation)


@dataclass(frozen=True)
class DotToken:
    token_id: int
    hash: str

    def to_json(self) -> dict[str, Any]:
        return {'tokenId': self.token_id, 'hash': self.hash}


@dataclass
class ProjectInfo:
    invocation_count: int
    manifest: Manifest = field(default_factory=dict)
    cid: str | None = None
