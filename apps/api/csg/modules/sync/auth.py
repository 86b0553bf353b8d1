"""
Credential acquisition for the remote blob store.

A provider is asked for a credential and answers with either a credential or
an error string; it never raises for "user is not signed in".
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol


class AuthState(str, Enum):
    signed_out = "signed_out"
    signed_in = "signed_in"


@dataclass(frozen=True)
class Credential:
    token: str = field(repr=False)


@dataclass(frozen=True)
class AuthResult:
    credential: Optional[Credential] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.credential is not None and self.error is None


class CredentialProvider(Protocol):
    async def acquire(self, *, interactive: bool) -> AuthResult: ...

    async def revoke(self, credential: Credential) -> None: ...


class StaticTokenProvider:
    """Hands out a pre-issued bearer token (CSG_DRIVE_TOKEN)."""

    def __init__(self, token: str) -> None:
        self._token = token.strip()
        self.revoked = False

    async def acquire(self, *, interactive: bool) -> AuthResult:
        if not self._token:
            return AuthResult(error="no_token")
        if self.revoked and not interactive:
            # silent re-auth after an explicit sign-out needs user interaction
            return AuthResult(error="interaction_required")
        self.revoked = False
        return AuthResult(credential=Credential(self._token))

    async def revoke(self, credential: Credential) -> None:
        self.revoked = True


class NullCredentialProvider:
    async def acquire(self, *, interactive: bool) -> AuthResult:
        return AuthResult(error="not_configured")

    async def revoke(self, credential: Credential) -> None:
        return None
