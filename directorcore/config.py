"""Settings, server credential policy and provider constants."""
from __future__ import annotations

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".directorcore"
CONFIG_FILE = CONFIG_DIR / "config.json"

# Gemini REST base, used for model entitlement lookups
DEFAULT_GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_CHAT_MODELS = ["gemini-2.5-pro", "gemini-2.5-flash"]
DEFAULT_VIDEO_PLAN_MODELS = ["gemini-2.5-pro"]
DEFAULT_HF_CHAT_MODEL = "meta-llama/Llama-3.1-8B-Instruct"

# Conversation token lifetime
CONTEXT_TTL_SECONDS = 60 * 60 * 12  # 12 hours
CONTEXT_COOKIE_NAME = "vision_context"

# Model entitlement lookups are cached this long per (endpoint, credential)
ENTITLEMENT_TTL_SECONDS = 600

# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

GEMINI = "gemini"
VEO = "veo"
HUGGINGFACE = "huggingface"

# Server-side env vars that can satisfy each provider, in lookup order
PROVIDER_ENV_VARS: dict[str, tuple[str, ...]] = {
    GEMINI: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    VEO: ("VEO_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
    HUGGINGFACE: ("HF_TOKEN",),
}

# Which provider serves each director mode
MODE_PROVIDERS: dict[str, str] = {
    "image_prompt": GEMINI,
    "video_plan": VEO,
    "loop_sequence": VEO,
}

_TRUTHY = {"1", "true", "yes", "on"}


def parse_model_list(value: str | None, fallback: list[str]) -> list[str]:
    """Split a comma/space separated model list, falling back when empty."""
    if not value:
        return list(fallback)
    entries = [e.strip() for e in value.replace(",", " ").split()]
    entries = [e for e in entries if e]
    return entries or list(fallback)


@dataclass
class Config:
    gemini_api_key: str = ""
    google_api_key: str = ""
    veo_api_key: str = ""
    hf_token: str = ""
    require_client_key: bool = False
    gemini_api_url: str = DEFAULT_GEMINI_API_URL
    chat_models: list[str] = field(default_factory=lambda: list(DEFAULT_CHAT_MODELS))
    video_plan_models: list[str] = field(default_factory=lambda: list(DEFAULT_VIDEO_PLAN_MODELS))
    hf_chat_model: str = DEFAULT_HF_CHAT_MODEL
    chat_provider: str = GEMINI  # backend for the image-prompt conversation
    context_secret: str = ""
    context_ttl: int = CONTEXT_TTL_SECONDS
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    loop_assistant_prompt: str = ""  # overrides the built-in loop assistant instructions

    @classmethod
    def load(cls) -> "Config":
        """Load config from env vars then config file."""
        cfg = cls()

        env = os.environ
        keys = {
            "gemini_api_key": env.get("GEMINI_API_KEY", ""),
            "google_api_key": env.get("GOOGLE_API_KEY", ""),
            "veo_api_key": env.get("VEO_API_KEY", ""),
            "hf_token": env.get("HF_TOKEN", ""),
        }

        # Fall back to config file for anything the environment left unset
        if CONFIG_FILE.exists():
            try:
                data = json.loads(CONFIG_FILE.read_text(encoding="utf-8-sig"))
                if not isinstance(data, dict):
                    data = {}
                for name in keys:
                    if not keys[name]:
                        keys[name] = data.get(name, "")
                if url := data.get("gemini_api_url"):
                    cfg.gemini_api_url = url
                if provider := data.get("chat_provider"):
                    cfg.chat_provider = provider
                if secret := data.get("context_secret"):
                    cfg.context_secret = secret
            except (json.JSONDecodeError, OSError) as e:
                log.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, e)

        for name, value in keys.items():
            setattr(cfg, name, value.strip())

        cfg.require_client_key = env.get("DIRECTOR_CORE_REQUIRE_API_KEY", "").strip().lower() in _TRUTHY
        if url := env.get("GEMINI_API_URL", "").strip():
            cfg.gemini_api_url = url
        cfg.gemini_api_url = cfg.gemini_api_url.rstrip("/")
        cfg.chat_models = parse_model_list(
            env.get("GEMINI_CHAT_MODELS") or env.get("GEMINI_CHAT_MODEL"), DEFAULT_CHAT_MODELS
        )
        cfg.video_plan_models = parse_model_list(
            env.get("GEMINI_VIDEO_PLAN_MODELS"), DEFAULT_VIDEO_PLAN_MODELS
        )
        if hf_model := env.get("HF_CHAT_MODEL", "").strip():
            cfg.hf_chat_model = hf_model
        if provider := env.get("DIRECTOR_CORE_PROVIDER", "").strip().lower():
            cfg.chat_provider = provider
        if secret := env.get("DIRECTOR_CONTEXT_SECRET", "").strip():
            cfg.context_secret = secret
        if ttl := env.get("DIRECTOR_CONTEXT_TTL", "").strip():
            try:
                cfg.context_ttl = max(60, int(ttl))
            except ValueError:
                log.warning("DIRECTOR_CONTEXT_TTL=%r is not an integer, keeping %ds", ttl, cfg.context_ttl)
        cfg.loop_assistant_prompt = env.get("LOOP_ASSISTANT_SYSTEM_PROMPT", "").strip()
        origins = env.get("ALLOWED_ORIGINS", "").strip()
        if origins:
            cfg.allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

        if not cfg.context_secret:
            # Tokens signed with a per-process secret do not survive restarts
            log.warning("DIRECTOR_CONTEXT_SECRET is not set; using an ephemeral signing secret")
            cfg.context_secret = secrets.token_urlsafe(32)

        return cfg

    def save(self) -> None:
        """Write the editable settings, keeping any other keys already in the file.

        ``context_secret`` is never written from here: a secret that came
        from the file stays there, and an ephemeral one is never persisted.
        """
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        data = {}
        if CONFIG_FILE.exists():
            try:
                existing = json.loads(CONFIG_FILE.read_text(encoding="utf-8-sig"))
            except (json.JSONDecodeError, OSError) as e:
                log.warning("Overwriting unreadable config file %s: %s", CONFIG_FILE, e)
            else:
                if isinstance(existing, dict):
                    data = existing
        data.update({
            "gemini_api_key": self.gemini_api_key,
            "google_api_key": self.google_api_key,
            "veo_api_key": self.veo_api_key,
            "hf_token": self.hf_token,
            "gemini_api_url": self.gemini_api_url,
            "chat_provider": self.chat_provider,
        })
        CONFIG_FILE.write_text(json.dumps(data, indent=2))

    def env_value(self, env_var: str) -> str:
        return {
            "GEMINI_API_KEY": self.gemini_api_key,
            "GOOGLE_API_KEY": self.google_api_key,
            "VEO_API_KEY": self.veo_api_key,
            "HF_TOKEN": self.hf_token,
        }.get(env_var, "")


@dataclass(frozen=True)
class ServerPolicy:
    """Credential policy decided once at startup.

    ``server_keys`` maps provider -> (env var, key) for every provider the
    deployment can serve from its own environment.
    """
    server_keys: dict[str, tuple[str, str]]
    require_client_key: bool = False

    @classmethod
    def from_config(cls, config: Config) -> "ServerPolicy":
        server_keys: dict[str, tuple[str, str]] = {}
        for provider, env_vars in PROVIDER_ENV_VARS.items():
            for env_var in env_vars:
                value = config.env_value(env_var).strip()
                if value:
                    server_keys[provider] = (env_var, value)
                    break
        return cls(server_keys=server_keys, require_client_key=config.require_client_key)

    def is_self_credentialed(self, provider: str) -> bool:
        """True when clients may omit their own key for ``provider``."""
        return not self.require_client_key and provider in self.server_keys

    def server_key(self, provider: str) -> str | None:
        if not self.is_self_credentialed(provider):
            return None
        return self.server_keys[provider][1]

    def env_vars_for(self, provider: str) -> tuple[str, ...]:
        return PROVIDER_ENV_VARS.get(provider, ())
