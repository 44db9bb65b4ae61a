"""Credential resolution: store → static config → provider."""

from n8n_draft_agent.credentials.provider import (
    CredentialNeedsAuth,
    CredentialProvider,
    CredentialResolved,
)
from n8n_draft_agent.credentials.resolver import (
    CredentialResolutionResult,
    MissingConnection,
    credential_key_variants,
    describe_missing,
    get_missing_credentials,
    resolve_credentials,
)
from n8n_draft_agent.credentials.store import (
    CredentialStore,
    InMemoryCredentialStore,
    PostgresCredentialStore,
)

__all__ = [
    "CredentialNeedsAuth",
    "CredentialProvider",
    "CredentialResolutionResult",
    "CredentialResolved",
    "CredentialStore",
    "InMemoryCredentialStore",
    "MissingConnection",
    "PostgresCredentialStore",
    "credential_key_variants",
    "describe_missing",
    "get_missing_credentials",
    "resolve_credentials",
]
