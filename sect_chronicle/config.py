"""Global app configuration (provider, credentials, models, generation settings).

Stored as {data_dir}/config.json. get_config() returns defaults merged with
stored values. update_config() applies partial updates — credentials are
replaced wholesale, models and custom_provider merged key-by-key, scalars
overwritten.
"""

import copy
import json
from pathlib import Path
from typing import Any

from sect_chronicle.models import Credential
from sect_chronicle.providers import UnknownProviderError, provider_ids

_CONFIG_DEFAULTS: dict[str, Any] = {
    "provider": "openai",
    "credentials": [],
    "models": {},
    "custom_provider": {
        "endpoint_template": "",
        "model_catalog": [],
        "default_model": "",
    },
    "temperature": 0.8,
    "max_output_tokens": 2048,
    "history_capacity": 10,
    "attempt_timeout": 60.0,
    "backoff_seconds": 2.0,
    "system_prompt": "",
}

_SCALARS = (
    "provider",
    "temperature",
    "max_output_tokens",
    "history_capacity",
    "attempt_timeout",
    "backoff_seconds",
    "system_prompt",
)


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _mask(secret: str) -> str:
    return f"…{secret[-4:]}" if secret else ""


def _normalise_credentials(
    raw: list[dict[str, Any]], previous: list[dict[str, Any]] | None = None
) -> list[dict[str, Any]]:
    """Validate credential dicts and fill in missing ids.

    A secret sent back in its masked form (as returned by redacted()) keeps
    the stored secret of the credential with the same id.
    """
    stored = {c["id"]: c.get("secret", "") for c in previous or []}
    result: list[dict[str, Any]] = []
    for i, entry in enumerate(raw, 1):
        entry = dict(entry)
        entry.setdefault("id", f"{entry.get('provider_id', 'key')}-{i}")
        old = stored.get(entry["id"])
        if old and entry.get("secret") == _mask(old):
            entry["secret"] = old
        result.append(Credential.model_validate(entry).model_dump())
    return result


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
    if "credentials" in fields:
        config["credentials"] = _normalise_credentials(fields["credentials"], config["credentials"])
    if "models" in fields:
        config["models"].update(fields["models"])
    if "custom_provider" in fields:
        config["custom_provider"].update(fields["custom_provider"])
    for key in _SCALARS:
        if key in fields:
            config[key] = fields[key]


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    path = _config_path(data_dir)
    if path.is_file():
        _merge(config, json.loads(path.read_text(encoding="utf-8")))
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config."""
    provider = fields.get("provider")
    if provider is not None and provider not in provider_ids():
        raise UnknownProviderError(f"Unknown provider {provider!r}")

    config = get_config(data_dir)
    _merge(config, fields)
    _config_path(data_dir).write_text(
        json.dumps(config, ensure_ascii=False, indent=2), encoding="utf-8"
    )
    return config


def credentials(config: dict[str, Any]) -> list[Credential]:
    return [Credential.model_validate(c) for c in config.get("credentials", [])]


def redacted(config: dict[str, Any]) -> dict[str, Any]:
    """Config safe to return over the API: secrets masked to their last 4 chars."""
    safe = copy.deepcopy(config)
    for cred in safe["credentials"]:
        cred["secret"] = _mask(cred.get("secret", ""))
    return safe
