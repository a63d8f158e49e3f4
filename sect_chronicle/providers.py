"""Provider profiles and per-provider request/response adapters.

Each supported vendor is described by a ProviderProfile. The profile's
request_shape selects the adapter that knows the vendor's JSON layout:

    "openai"     POST {endpoint}
                 {"model", "messages": [system, ...history, user],
                  "temperature", "max_tokens"}
                 Response: {"choices": [{"message": {"content": "..."}}]}
    "anthropic"  POST {endpoint}    x-api-key header
                 {"model", "system", "messages", "temperature", "max_tokens"}
                 Response: {"content": [{"type": "text", "text": "..."}]}
    "gemini"     POST {endpoint}?key=...
                 {"systemInstruction", "contents",
                  "generationConfig": {"temperature", "maxOutputTokens"}}
                 Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

Every adapter maps HTTP 401/403/429 to CredentialExhausted and any other
non-2xx status (or an unreadable body) to TransportError, so the gateway
never has to look at vendor-specific status semantics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from sect_chronicle.models import CompletionRequest, Credential, ProviderProfile

CREDENTIAL_STATUSES = frozenset({401, 403, 429})


class CredentialExhausted(Exception):
    """The provider rejected the credential (auth failure or rate limit)."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"credential rejected with HTTP {status}")
        self.status = status


class TransportError(Exception):
    """Any non-credential failure talking to the provider."""


class UnknownProviderError(ValueError):
    """Raised when a provider id has no profile."""


@dataclass
class WireRequest:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

PROFILES: dict[str, ProviderProfile] = {
    "openai": ProviderProfile(
        provider_id="openai",
        endpoint_template="https://api.openai.com/v1/chat/completions",
        request_shape="openai",
        response_shape="choices[0].message.content",
        model_catalog=["gpt-4o-mini", "gpt-4o", "gpt-4.1"],
        default_model="gpt-4o-mini",
    ),
    "deepseek": ProviderProfile(
        provider_id="deepseek",
        endpoint_template="https://api.deepseek.com/v1/chat/completions",
        request_shape="openai",
        response_shape="choices[0].message.content",
        model_catalog=["deepseek-chat", "deepseek-reasoner"],
        default_model="deepseek-chat",
    ),
    "moonshot": ProviderProfile(
        provider_id="moonshot",
        endpoint_template="https://api.moonshot.cn/v1/chat/completions",
        request_shape="openai",
        response_shape="choices[0].message.content",
        model_catalog=["moonshot-v1-8k", "moonshot-v1-32k", "moonshot-v1-128k"],
        default_model="moonshot-v1-8k",
    ),
    "openrouter": ProviderProfile(
        provider_id="openrouter",
        endpoint_template="https://openrouter.ai/api/v1/chat/completions",
        request_shape="openai",
        response_shape="choices[0].message.content",
        model_catalog=[
            "anthropic/claude-3.5-sonnet",
            "openai/gpt-4o",
            "deepseek/deepseek-chat",
            "qwen/qwen-2.5-72b-instruct",
        ],
        default_model="deepseek/deepseek-chat",
    ),
    "anthropic": ProviderProfile(
        provider_id="anthropic",
        endpoint_template="https://api.anthropic.com/v1/messages",
        request_shape="anthropic",
        response_shape="content[*].text",
        model_catalog=["claude-3-5-sonnet-latest", "claude-3-5-haiku-latest"],
        default_model="claude-3-5-haiku-latest",
    ),
    "gemini": ProviderProfile(
        provider_id="gemini",
        endpoint_template=(
            "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
        ),
        request_shape="gemini",
        response_shape="candidates[0].content.parts[*].text",
        model_catalog=["gemini-1.5-flash", "gemini-1.5-pro", "gemini-2.0-flash"],
        default_model="gemini-1.5-flash",
    ),
}

CUSTOM_PROVIDER_ID = "custom"


def custom_profile(settings: dict[str, Any] | None) -> ProviderProfile:
    """Build the user-defined OpenAI-compatible profile from config."""
    settings = settings or {}
    catalog = list(settings.get("model_catalog") or [])
    return ProviderProfile(
        provider_id=CUSTOM_PROVIDER_ID,
        endpoint_template=settings.get("endpoint_template", ""),
        request_shape="openai",
        response_shape="choices[0].message.content",
        model_catalog=catalog,
        default_model=settings.get("default_model") or (catalog[0] if catalog else ""),
    )


def provider_ids() -> list[str]:
    return [*PROFILES, CUSTOM_PROVIDER_ID]


def resolve_profile(provider_id: str, config: dict[str, Any] | None = None) -> ProviderProfile:
    """Return the profile for a provider, with the configured model applied."""
    config = config or {}
    if provider_id == CUSTOM_PROVIDER_ID:
        profile = custom_profile(config.get("custom_provider"))
        if not profile.endpoint_template:
            raise UnknownProviderError("Custom provider has no endpoint configured")
    elif provider_id in PROFILES:
        profile = PROFILES[provider_id]
    else:
        raise UnknownProviderError(f"Unknown provider {provider_id!r}")

    chosen = (config.get("models") or {}).get(provider_id)
    if chosen:
        profile = profile.model_copy(update={"default_model": chosen})
    return profile


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

class ProviderAdapter(ABC):
    """Translate a CompletionRequest into one vendor's wire shape and back."""

    @abstractmethod
    def build_request(
        self, profile: ProviderProfile, request: CompletionRequest, credential: Credential
    ) -> WireRequest: ...

    @abstractmethod
    def extract_text(self, body: Any) -> str: ...

    def parse_response(self, profile: ProviderProfile, status: int, body: Any) -> str:
        if status in CREDENTIAL_STATUSES:
            raise CredentialExhausted(status, f"{profile.provider_id} returned HTTP {status}")
        if not 200 <= status < 300:
            raise TransportError(f"{profile.provider_id} returned HTTP {status}")
        try:
            return self.extract_text(body)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise TransportError(
                f"Unexpected response format from {profile.provider_id}"
            ) from e

    @staticmethod
    def model_for(profile: ProviderProfile, credential: Credential) -> str:
        return credential.model_override or profile.default_model

    @staticmethod
    def history_from_user(request: CompletionRequest) -> list[tuple[str, str]]:
        """Drop leading assistant turns; some vendors insist the user speaks first."""
        turns = list(request.prior_turns)
        while turns and turns[0][0] != "user":
            turns.pop(0)
        return turns


class OpenAIAdapter(ProviderAdapter):
    def build_request(self, profile, request, credential):
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend({"role": role, "content": text} for role, text in request.prior_turns)
        messages.append({"role": "user", "content": request.user_turn})
        body: dict[str, Any] = {
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
        }
        model = self.model_for(profile, credential)
        if model:
            body["model"] = model
        return WireRequest(
            url=profile.endpoint_template.format(model=model),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {credential.secret}",
            },
            body=body,
        )

    def extract_text(self, body):
        return body["choices"][0]["message"]["content"]


class AnthropicAdapter(ProviderAdapter):
    API_VERSION = "2023-06-01"

    def build_request(self, profile, request, credential):
        messages = [{"role": role, "content": text} for role, text in self.history_from_user(request)]
        messages.append({"role": "user", "content": request.user_turn})
        model = self.model_for(profile, credential)
        return WireRequest(
            url=profile.endpoint_template.format(model=model),
            headers={
                "Content-Type": "application/json",
                "x-api-key": credential.secret,
                "anthropic-version": self.API_VERSION,
            },
            body={
                "model": model,
                "system": request.system_prompt,
                "messages": messages,
                "temperature": request.temperature,
                "max_tokens": request.max_output_tokens,
            },
        )

    def extract_text(self, body):
        parts = [block["text"] for block in body["content"] if block.get("type") == "text"]
        if not parts:
            raise KeyError("text")
        return "".join(parts)


class GeminiAdapter(ProviderAdapter):
    _ROLES = {"user": "user", "assistant": "model"}

    def build_request(self, profile, request, credential):
        contents = [
            {"role": self._ROLES[role], "parts": [{"text": text}]}
            for role, text in self.history_from_user(request)
        ]
        contents.append({"role": "user", "parts": [{"text": request.user_turn}]})
        model = self.model_for(profile, credential)
        return WireRequest(
            url=profile.endpoint_template.format(model=model),
            headers={"Content-Type": "application/json"},
            params={"key": credential.secret},
            body={
                "systemInstruction": {"parts": [{"text": request.system_prompt}]},
                "contents": contents,
                "generationConfig": {
                    "temperature": request.temperature,
                    "maxOutputTokens": request.max_output_tokens,
                },
            },
        )

    def extract_text(self, body):
        parts = body["candidates"][0]["content"]["parts"]
        return "".join(p.get("text", "") for p in parts)


ADAPTERS: dict[str, ProviderAdapter] = {
    "openai": OpenAIAdapter(),
    "anthropic": AnthropicAdapter(),
    "gemini": GeminiAdapter(),
}


def adapter_for(profile: ProviderProfile) -> ProviderAdapter:
    return ADAPTERS[profile.request_shape]
