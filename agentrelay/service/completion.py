from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import httpx

from agentrelay.logging import get_logger, preview
from agentrelay.service.correlation import Channel, first_match, identifier_rules
from agentrelay.service.errors import CompletionError

logger = get_logger(__name__)

_PROFILE_RULES = {
    "first_name": identifier_rules("first_name", "firstName"),
    "last_name": identifier_rules("last_name", "lastName"),
    "username": identifier_rules("instagram_username", "ig_username", "username", "user_name"),
    "locale": identifier_rules("locale", "language", "lang"),
}

_MESSAGE_RULES = {
    Channel.MANYCHAT: identifier_rules("message", "text"),
    # SMS and chat bridges post the text under their own field names
    Channel.UNIVERSAL: identifier_rules("message", "text", "Message", "Body", "body", "content"),
}


def extract_message(
    payload: Mapping[str, Any], channel: Channel = Channel.UNIVERSAL
) -> str:
    """Return the end user's message text, or an empty string."""
    return first_match(payload, _MESSAGE_RULES[Channel(channel)]) or ""


def extract_user_profile(payload: Mapping[str, Any]) -> Dict[str, str]:
    """Collect the optional profile fields senders include with a message."""
    profile = {
        name: value
        for name, rules in _PROFILE_RULES.items()
        if (value := first_match(payload, rules)) is not None
    }
    full_name = payload.get("name")
    if "first_name" not in profile and isinstance(full_name, str) and full_name.strip():
        first, _, last = full_name.strip().partition(" ")
        profile["first_name"] = first
        if last.strip():
            profile.setdefault("last_name", last.strip())
    return profile


def _profile_context(profile: Mapping[str, str]) -> str:
    parts: List[str] = []
    name = " ".join(
        part for part in (profile.get("first_name"), profile.get("last_name")) if part
    )
    if name:
        parts.append(f"The user's name is {name}.")
    if profile.get("username"):
        parts.append(f"Their username is @{profile['username']}.")
    if profile.get("locale"):
        parts.append(f"Their language/region is {profile['locale']}.")
    return " ".join(parts)


class CompletionService:
    """Chat completion client for an OpenAI-compatible endpoint.

    Without an API key the service returns a deterministic placeholder so
    the webhook flow can be exercised locally.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        system_prompt: str = "",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    def build_messages(
        self, message: str, profile: Optional[Mapping[str, str]] = None
    ) -> List[dict]:
        messages = [{"role": "system", "content": self.system_prompt}]
        context = _profile_context(profile or {})
        if context:
            messages.append({"role": "system", "content": f"User context: {context}"})
        messages.append({"role": "user", "content": message})
        return messages

    async def complete(
        self,
        message: str,
        *,
        profile: Optional[Mapping[str, str]] = None,
        key: Optional[str] = None,
    ) -> str:
        """Generate a reply for ``message``.

        Raises:
            CompletionError: the provider rejected the request or was unreachable
        """
        messages = self.build_messages(message, profile)
        if not self.is_configured:
            logger.warning("completion_no_api_key", key=key, model=self.model)
            return f"[placeholder model={self.model}] {message}"

        client = await self._get_client()
        try:
            response = await client.post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "temperature": self.temperature,
                    "messages": messages,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "completion_api_error",
                key=key,
                status_code=exc.response.status_code,
                model=self.model,
                error=str(exc),
            )
            raise CompletionError(
                f"Completion failed: {exc.response.status_code}",
                upstream_status=exc.response.status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            logger.error("completion_timeout", key=key, model=self.model, error=str(exc))
            raise CompletionError("Completion timed out") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "completion_request_failed",
                key=key,
                model=self.model,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise CompletionError("Completion request failed") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        first_choice = next(iter(choices or []), None)
        if not isinstance(first_choice, dict):
            logger.warning("completion_no_choices", key=key, model=self.model)
            return ""
        content = (first_choice.get("message") or {}).get("content") or ""
        logger.info("completion_received", key=key, model=self.model, preview=preview(content))
        return content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["CompletionService", "extract_message", "extract_user_profile"]
