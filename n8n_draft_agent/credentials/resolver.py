"""Credential resolution and injection for generated workflows.

Resolution chain per credential type (first match wins):
  1. Credential store — per-user mappings cached from earlier resolutions
  2. Static config    — Settings.credentials, with "Api" suffix tolerance
  3. Provider         — pluggable CredentialProvider (e.g. cloud OAuth)
  4. Missing          — reported as a MissingConnection

Each credential type is resolved once per workflow, even when several nodes
need it, and independently of every other type.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any

from n8n_draft_agent.credentials.provider import (
    CredentialNeedsAuth,
    CredentialProvider,
    CredentialResolved,
    coerce_provider_result,
)
from n8n_draft_agent.credentials.store import CredentialStore

logger = logging.getLogger("n8n_draft_agent.credentials.resolver")

_API_SUFFIX = "Api"

_DISPLAY_NAMES: dict[str, str] = {
    "gmailOAuth2Api": "Gmail",
    "googleSheetsOAuth2Api": "Google Sheets",
    "googleCalendarOAuth2Api": "Google Calendar",
    "googleDriveOAuth2Api": "Google Drive",
    "slackOAuth2Api": "Slack",
    "slackApi": "Slack",
    "notionOAuth2Api": "Notion",
    "notionApi": "Notion",
    "githubOAuth2Api": "GitHub",
    "githubApi": "GitHub",
    "stripeApi": "Stripe",
    "airtableTokenApi": "Airtable",
    "telegramApi": "Telegram",
    "discordBotApi": "Discord",
    "openAiApi": "OpenAI",
}

_PLACEHOLDER_ID = "PLACEHOLDER"


@dataclass
class MissingConnection:
    """A credential type that could not be resolved to an n8n credential ID.

    auth_url is set only when the provider asked for user authorization.
    display_name / provider are presentation details added by
    describe_missing(); the resolver itself leaves them unset.
    """

    cred_type: str
    auth_url: str | None = None
    display_name: str | None = None
    provider: str | None = None


@dataclass
class CredentialResolutionResult:
    graph: dict[str, Any]
    missing_connections: list[MissingConnection] = field(default_factory=list)
    injected: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


def credential_key_variants(cred_type: str) -> list[str]:
    """Config keys to try for a credential type, in priority order.

    The LLM and hand-written config disagree about a trailing "Api"
    ("gmailOAuth2" vs "gmailOAuth2Api"); this is the single place that
    tolerates it.
    """
    if cred_type.endswith(_API_SUFFIX) and len(cred_type) > len(_API_SUFFIX):
        return [cred_type, cred_type[: -len(_API_SUFFIX)]]
    return [cred_type, cred_type + _API_SUFFIX]


def find_config_credential(credentials: dict[str, str], cred_type: str) -> str | None:
    for key in credential_key_variants(cred_type):
        value = credentials.get(key)
        if value:
            return value
    return None


def credential_display_name(cred_type: str) -> str:
    return _DISPLAY_NAMES.get(cred_type, cred_type)


def credential_provider_name(cred_type: str) -> str:
    """"gmailOAuth2Api" → "gmail", "airtableTokenApi" → "airtable"."""
    return re.sub(r"(OAuth2Api|TokenApi|Api)$", "", cred_type).lower()


def describe_missing(missing: MissingConnection) -> MissingConnection:
    """Return a copy with display_name / provider filled in for rendering."""
    return replace(
        missing,
        display_name=missing.display_name or credential_display_name(missing.cred_type),
        provider=missing.provider or credential_provider_name(missing.cred_type),
    )


# ---------------------------------------------------------------------------
# Graph scanning / injection
# ---------------------------------------------------------------------------


def extract_required_credential_types(graph: dict[str, Any]) -> list[str]:
    """Distinct credential types across all nodes, in first-seen order."""
    seen: dict[str, None] = {}
    for node in graph.get("nodes") or []:
        creds = node.get("credentials") if isinstance(node, dict) else None
        if isinstance(creds, dict):
            for cred_type in creds:
                seen.setdefault(cred_type, None)
    return list(seen)


def inject_credential_ids(graph: dict[str, Any], credential_map: dict[str, str]) -> dict[str, Any]:
    """Copy of graph with every resolved credential reference pointing at its ID.

    The reference's display name is kept. Unresolved types are left as they were.
    """
    injected = copy.deepcopy(graph)
    for node in injected.get("nodes") or []:
        creds = node.get("credentials") if isinstance(node, dict) else None
        if not isinstance(creds, dict):
            continue
        for cred_type, ref in creds.items():
            cred_id = credential_map.get(cred_type)
            if not cred_id:
                continue
            name = ref.get("name") if isinstance(ref, dict) else None
            creds[cred_type] = {"id": cred_id, "name": name or credential_display_name(cred_type)}
    return injected


def get_missing_credentials(graph: dict[str, Any]) -> list[str]:
    """Credential types whose reference still has no usable ID."""
    missing: dict[str, None] = {}
    for node in graph.get("nodes") or []:
        creds = node.get("credentials") if isinstance(node, dict) else None
        if not isinstance(creds, dict):
            continue
        for cred_type, ref in creds.items():
            cred_id = ref.get("id") if isinstance(ref, dict) else None
            if not cred_id or cred_id == _PLACEHOLDER_ID or "{{" in str(cred_id):
                missing.setdefault(cred_type, None)
    return list(missing)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _config_credentials(config: Any) -> dict[str, str]:
    if config is None:
        return {}
    if isinstance(config, dict):
        creds = config.get("credentials")
    else:
        creds = getattr(config, "credentials", None)
    return creds if isinstance(creds, dict) else {}


async def _resolve_one(
    cred_type: str,
    user_id: str,
    config_credentials: dict[str, str],
    cred_store: CredentialStore | None,
    cred_provider: CredentialProvider | None,
    missing: list[MissingConnection],
) -> str | None:
    # 1. Credential store
    if cred_store is not None:
        try:
            cached_id = await cred_store.get(user_id, cred_type)
        except Exception as e:
            logger.error("Credential store lookup failed for %s: %s", cred_type, e)
            cached_id = None
        if cached_id:
            logger.debug("Resolved %s from credential store", cred_type)
            return cached_id

    # 2. Static config
    config_id = find_config_credential(config_credentials, cred_type)
    if config_id:
        logger.debug("Resolved %s from static config", cred_type)
        return config_id

    # 3. External provider
    if cred_provider is not None:
        try:
            result = coerce_provider_result(await cred_provider.resolve(user_id, cred_type))
        except Exception as e:
            logger.error("Credential provider failed for %s: %s", cred_type, e)
            result = None

        if isinstance(result, CredentialResolved):
            if cred_store is not None:
                try:
                    await cred_store.set(user_id, cred_type, result.credential_id)
                except Exception as e:
                    logger.error("Could not cache credential %s for %s: %s", cred_type, user_id, e)
            logger.debug("Resolved %s from provider", cred_type)
            return result.credential_id

        if isinstance(result, CredentialNeedsAuth):
            missing.append(MissingConnection(cred_type=cred_type, auth_url=result.auth_url))
            return None

    # 4. Missing
    missing.append(MissingConnection(cred_type=cred_type))
    return None


async def resolve_credentials(
    graph: dict[str, Any],
    user_id: str,
    config: Any,
    cred_store: CredentialStore | None,
    cred_provider: CredentialProvider | None,
) -> CredentialResolutionResult:
    """Resolve every credential type the workflow needs and inject the IDs.

    config is anything exposing a `credentials` mapping (Settings, or a dict
    with a "credentials" key). cred_store / cred_provider may be None.
    """
    required = extract_required_credential_types(graph)
    if not required:
        return CredentialResolutionResult(graph=graph)

    config_credentials = _config_credentials(config)
    injected: dict[str, str] = {}
    missing: list[MissingConnection] = []

    for cred_type in required:
        cred_id = await _resolve_one(
            cred_type, user_id, config_credentials, cred_store, cred_provider, missing
        )
        if cred_id:
            injected[cred_type] = cred_id

    if missing:
        logger.info(
            "Credentials unresolved for user %s: %s",
            user_id, ", ".join(m.cred_type for m in missing),
        )

    return CredentialResolutionResult(
        graph=inject_credential_ids(graph, injected),
        missing_connections=missing,
        injected=injected,
    )
