"""Configuration management for the postboard web frontend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

_ENV_KEYS = {
    "api_base_url": "POSTBOARD_API_BASE_URL",
    "auth_url": "POSTBOARD_AUTH_URL",
    "auth_anon_key": "POSTBOARD_AUTH_ANON_KEY",
    "oauth_redirect_url": "POSTBOARD_OAUTH_REDIRECT_URL",
    "http_timeout": "POSTBOARD_HTTP_TIMEOUT",
    "secure_cookies": "POSTBOARD_SESSION_SECURE",
    "trusted_proxies": "POSTBOARD_TRUSTED_PROXIES",
}

_REQUIRED = ("api_base_url", "auth_url", "auth_anon_key")


def _env_flag(value: object, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in {"0", "false", "no", "off"}


def _normalize_url(value: object) -> str:
    return str(value or "").strip().rstrip("/")


@dataclass(frozen=True)
class Settings:
    """Runtime settings shared by every request handler."""

    api_base_url: str
    auth_url: str
    auth_anon_key: str
    oauth_redirect_url: Optional[str] = None
    http_timeout: float = 10.0
    secure_cookies: bool = True
    trusted_proxies: tuple[str, ...] = ()

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from merged file and environment values."""
        missing = [key for key in _REQUIRED if not str(data.get(key) or "").strip()]
        if missing:
            names = ", ".join(_ENV_KEYS[key] for key in missing)
            raise ValueError(f"Missing required configuration values: {names}")

        redirect = str(data.get("oauth_redirect_url") or "").strip() or None

        raw_proxies = data.get("trusted_proxies") or ()
        if isinstance(raw_proxies, str):
            raw_proxies = raw_proxies.split(",")
        proxies = tuple(str(item).strip() for item in raw_proxies if str(item).strip())

        try:
            timeout = float(data.get("http_timeout") or 10.0)
        except (TypeError, ValueError) as exc:
            raise ValueError("POSTBOARD_HTTP_TIMEOUT must be a number of seconds") from exc
        if timeout <= 0:
            raise ValueError("POSTBOARD_HTTP_TIMEOUT must be positive")

        return Settings(
            api_base_url=_normalize_url(data["api_base_url"]),
            auth_url=_normalize_url(data["auth_url"]),
            auth_anon_key=str(data["auth_anon_key"]).strip(),
            oauth_redirect_url=redirect,
            http_timeout=timeout,
            secure_cookies=_env_flag(data.get("secure_cookies"), True),
            trusted_proxies=proxies,
        )

    def masked(self) -> Dict[str, object]:
        key = self.auth_anon_key
        hidden = f"{key[:4]}…" if len(key) > 4 else "…"
        return {
            "api_base_url": self.api_base_url,
            "auth_url": self.auth_url,
            "auth_anon_key": hidden,
            "oauth_redirect_url": self.oauth_redirect_url,
            "http_timeout": self.http_timeout,
            "secure_cookies": self.secure_cookies,
            "trusted_proxies": list(self.trusted_proxies),
        }


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "postboard.yaml").resolve(strict=False)
    return candidate


def _load_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return {key: raw[key] for key in _ENV_KEYS if key in raw}


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, overridden by the environment."""
    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("POSTBOARD_CONFIG"))

    values: Dict[str, object] = {}
    if path.exists():
        values.update(_load_file(path))

    for key, env_name in _ENV_KEYS.items():
        raw = env.get(env_name)
        if raw is not None and raw.strip():
            values[key] = raw

    return Settings.from_dict(values)


def trusted_proxy_hosts(settings: Settings) -> List[str] | str:
    hosts = list(settings.trusted_proxies)
    return hosts or "*"


__all__ = ["Settings", "load_settings", "resolve_config_path", "trusted_proxy_hosts"]
