"""Provider credential resolution and model entitlement lookups."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from .config import GEMINI, HUGGINGFACE, VEO, ENTITLEMENT_TTL_SECONDS, ServerPolicy
from .errors import MissingCredential, ProviderError

log = logging.getLogger(__name__)

GENERIC_HEADER = "X-Provider-Api-Key"

# Single-purpose headers, checked before the generic one
PROVIDER_HEADERS: dict[str, tuple[str, ...]] = {
    GEMINI: ("X-Gemini-Api-Key", "X-Google-Api-Key"),
    VEO: ("X-Veo-Api-Key", "X-Gemini-Api-Key", "X-Google-Api-Key"),
    HUGGINGFACE: ("X-HF-Token",),
}

_GEMINI_ALIASES = ("gemini", "geminiApiKey", "gemini_api_key", "google", "googleApiKey", "google_api_key")

# Body keys naming a provider's key, valid at the top level and inside
# ``providerKeys`` / ``provider`` objects
PROVIDER_BODY_ALIASES: dict[str, tuple[str, ...]] = {
    GEMINI: _GEMINI_ALIASES,
    VEO: ("veo", "veoApiKey", "veo_api_key") + _GEMINI_ALIASES,
    HUGGINGFACE: ("huggingface", "hf", "hfToken", "hf_token", "huggingfaceApiKey"),
}

GENERIC_BODY_KEYS = ("providerApiKey", "apiKey")


def normalize_key(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _first_key(source: Mapping[str, Any], names: tuple[str, ...]) -> str | None:
    for name in names:
        if key := normalize_key(source.get(name)):
            return key
    return None


@dataclass(frozen=True)
class ResolvedCredential:
    provider: str
    api_key: str
    source: str  # "header", "body", "providerKeys", "provider" or "env"


class CredentialResolver:
    """Finds at most one API key per provider for a request.

    Sources are tried in a fixed order and the first non-empty value wins;
    values are never merged across sources. The server environment is only
    consulted when the :class:`ServerPolicy` allows clients to omit a key.
    """

    def __init__(self, policy: ServerPolicy, api_url: str, cache: "EntitlementCache | None" = None):
        self.policy = policy
        self.api_url = api_url.rstrip("/")
        self.cache = cache or EntitlementCache()

    def find_client_key(
        self, provider: str, headers: Mapping[str, str], body: Any
    ) -> tuple[str, str] | None:
        """Return ``(key, source)`` from the request itself, or None."""
        lowered = {k.lower(): v for k, v in headers.items()}
        for name in PROVIDER_HEADERS.get(provider, ()):
            if key := normalize_key(lowered.get(name.lower())):
                return key, "header"
        if key := normalize_key(lowered.get(GENERIC_HEADER.lower())):
            return key, "header"

        if not isinstance(body, dict):
            return None

        aliases = PROVIDER_BODY_ALIASES.get(provider, ())
        if key := _first_key(body, aliases + GENERIC_BODY_KEYS):
            return key, "body"
        for container in ("providerKeys", "provider"):
            nested = body.get(container)
            if isinstance(nested, dict):
                if key := _first_key(nested, aliases):
                    return key, container
        return None

    def resolve(self, provider: str, headers: Mapping[str, str], body: Any = None) -> ResolvedCredential:
        found = self.find_client_key(provider, headers, body)
        if found:
            key, source = found
            return ResolvedCredential(provider, key, source)

        server_key = self.policy.server_key(provider)
        if server_key:
            return ResolvedCredential(provider, server_key, "env")

        raise MissingCredential(
            provider,
            self.policy.env_vars_for(provider),
            PROVIDER_HEADERS.get(provider, ()) + (GENERIC_HEADER,),
        )

    async def resolve_model(self, api_key: str, candidates: list[str]) -> str | None:
        """First model in ``candidates`` this key is entitled to use."""
        if not candidates:
            return None
        available = self.cache.get(self.api_url, api_key)
        if available is None:
            available = await asyncio.to_thread(list_google_models, api_key, self.api_url)
            self.cache.set(self.api_url, api_key, available)
        for candidate in candidates:
            if candidate in available:
                return candidate
        return None


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------

class EntitlementCache:
    """Model-list memo keyed by (endpoint, credential) with a bounded TTL."""

    def __init__(self, ttl: float = ENTITLEMENT_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[float, frozenset[str]]] = {}

    def get(self, api_url: str, credential: str) -> frozenset[str] | None:
        entry = self._entries.get((api_url, credential))
        if entry is None:
            return None
        expires_at, models = entry
        if self._clock() >= expires_at:
            del self._entries[(api_url, credential)]
            return None
        return models

    def set(self, api_url: str, credential: str, models: frozenset[str]) -> None:
        self._entries[(api_url, credential)] = (self._clock() + self.ttl, frozenset(models))

    def invalidate(self, api_url: str | None = None, credential: str | None = None) -> None:
        """Drop matching entries; no arguments clears everything."""
        for key in list(self._entries):
            if api_url is not None and key[0] != api_url:
                continue
            if credential is not None and key[1] != credential:
                continue
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


def list_google_models(api_key: str, api_url: str) -> frozenset[str]:
    """Model names (full and short form) visible to ``api_key``."""
    try:
        r = requests.get(f"{api_url}/models", headers={"x-goog-api-key": api_key}, timeout=30)
    except requests.RequestException as e:
        raise ProviderError(f"Model entitlement lookup could not be sent: {e}", provider=GEMINI) from e

    if not r.ok:
        raise ProviderError(
            f"Failed to query model entitlements (status {r.status_code})",
            status=r.status_code,
            details=r.text[:500] or None,
            provider=GEMINI,
        )

    try:
        payload = r.json()
    except ValueError:
        payload = {}

    models: set[str] = set()
    for entry in payload.get("models", []) if isinstance(payload, dict) else []:
        name = entry.get("name") if isinstance(entry, dict) else None
        if isinstance(name, str) and name:
            models.add(name)
            models.add(name.rsplit("/", 1)[-1])
    log.debug("Entitlement lookup found %d models", len(models))
    return frozenset(models)
