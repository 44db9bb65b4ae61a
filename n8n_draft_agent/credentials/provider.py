"""Credential provider contract.

A provider is an optional, pluggable source of n8n credential IDs — typically
a cloud OAuth service that can create the credential on the user's behalf, or
hand back an authorization URL when the user has not connected the service
yet.

    result = await provider.resolve(user_id, "gmailOAuth2Api")
    # CredentialResolved(credential_id=...)  — ready to inject
    # CredentialNeedsAuth(auth_url=...)      — user must authorize first
    # None                                   — provider cannot help
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Union, runtime_checkable


@dataclass(frozen=True)
class CredentialResolved:
    credential_id: str
    status: str = "resolved"


@dataclass(frozen=True)
class CredentialNeedsAuth:
    auth_url: str
    status: str = "needs_auth"


ProviderResult = Union[CredentialResolved, CredentialNeedsAuth]


@runtime_checkable
class CredentialProvider(Protocol):
    async def resolve(self, user_id: str, cred_type: str) -> ProviderResult | dict | None: ...


def coerce_provider_result(raw: Any) -> ProviderResult | None:
    """Normalise a provider reply to a ProviderResult.

    Accepts the typed results above or plain dicts with a "status" key
    ({"status": "resolved", "credentialId": ...} /
    {"status": "needs_auth", "authUrl": ...}). Anything else maps to None.
    """
    if isinstance(raw, (CredentialResolved, CredentialNeedsAuth)):
        return raw
    if not isinstance(raw, dict):
        return None
    status = raw.get("status")
    if status == "resolved":
        credential_id = raw.get("credentialId") or raw.get("credential_id")
        return CredentialResolved(str(credential_id)) if credential_id else None
    if status == "needs_auth":
        auth_url = raw.get("authUrl") or raw.get("auth_url")
        return CredentialNeedsAuth(str(auth_url)) if auth_url else None
    return None
