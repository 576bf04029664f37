"""Request builder for the OpenRouter provider."""

from typing import Any, Dict, Mapping, Sequence

from providers.base import ProviderConfig


def _set_if_not_none(body: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        body[key] = value


def build_request_body(
    model: str, messages: Sequence[Mapping[str, str]], config: ProviderConfig
) -> dict:
    """Build the streaming chat-completions body for one attempt."""
    body: Dict[str, Any] = {
        "model": model,
        "messages": [dict(message) for message in messages],
        "stream": True,
    }
    _set_if_not_none(body, "temperature", config.temperature)
    _set_if_not_none(body, "max_tokens", config.max_tokens)
    return body


def build_headers(config: ProviderConfig) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
    }
    # OpenRouter attribution headers
    if config.http_referer:
        headers["HTTP-Referer"] = config.http_referer
    if config.app_title:
        headers["X-Title"] = config.app_title
    return headers
