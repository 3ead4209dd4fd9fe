import os
from typing import Any, Optional, Protocol

import httpx

from flf_coach.core.images import normalize_image_data_url
from flf_coach.core.prompts import DEFAULT_PHOTO_PROMPT

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_CHAT_URL = os.getenv("OPENAI_CHAT_URL", "https://api.openai.com/v1/chat/completions")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "600"))
FOOD_LOG_MAX_TOKENS = int(os.getenv("FOOD_LOG_MAX_TOKENS", "400"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "55"))
FOOD_LOG_TIMEOUT_SECONDS = float(os.getenv("FOOD_LOG_TIMEOUT_SECONDS", "15"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class LLMTimeoutError(LLMRequestError):
    pass


class LLMConfigError(LLMRequestError):
    pass


def http_timeout(total_seconds: float) -> httpx.Timeout:
    return httpx.Timeout(total_seconds, connect=min(LLM_CONNECT_TIMEOUT_SECONDS, total_seconds))


def provider_error_message(data: Any, status_code: int) -> str:
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        detail = error.get("message") or error.get("code")
        if detail:
            return str(detail)
    return f"HTTP {status_code}"


def extract_completion_text(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("Chat completion has no message content") from exc
    text = str(content or "").strip()
    if not text:
        raise ValueError("Chat completion returned empty content")
    return text


def build_chat_messages(
    system_prompt: str,
    turns: list[dict[str, str]],
    image_base64: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Prepend the system prompt and attach an image to the final user turn.

    The image becomes a multi-part content list (text + image_url data URI);
    it is dropped when the last turn is not from the user.
    """
    image_url = normalize_image_data_url(image_base64)
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    last_index = len(turns) - 1
    for index, turn in enumerate(turns):
        role = turn.get("role") or "user"
        content = turn.get("content") or ""
        if image_url and index == last_index and role == "user":
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": content or DEFAULT_PHOTO_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            )
            continue
        messages.append({"role": role, "content": content})
    return messages


def request_chat_completion(
    api_key: str,
    messages: list[dict[str, Any]],
    *,
    model: str = CHAT_MODEL,
    max_tokens: int = CHAT_MAX_TOKENS,
    timeout: float = PROVIDER_TIMEOUT_SECONDS,
    url: str = OPENAI_CHAT_URL,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    payload = {"model": model, "messages": messages, "max_tokens": max_tokens}
    try:
        with httpx.Client(transport=transport, timeout=http_timeout(timeout)) as http:
            response = http.post(
                url,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=payload,
            )
    except httpx.TimeoutException as exc:
        raise LLMTimeoutError(
            provider="openai",
            model=model,
            message=f"OpenAI request timed out after {timeout:g}s",
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMRequestError(
            provider="openai",
            model=model,
            message=f"OpenAI request failed: {str(exc)[:220]}",
        ) from exc

    try:
        data = response.json()
    except ValueError:
        data = {}
    if not response.is_success:
        raise LLMRequestError(
            provider="openai",
            model=model,
            status_code=response.status_code,
            message=(
                f"OpenAI request failed (status={response.status_code}): "
                f"{provider_error_message(data, response.status_code)[:220]}"
            ),
        )
    try:
        return extract_completion_text(data)
    except ValueError as exc:
        raise LLMRequestError(
            provider="openai",
            model=model,
            status_code=response.status_code,
            message=f"OpenAI returned no reply: {str(data)[:200]}",
        ) from exc


class LLMClient(Protocol):
    def is_configured(self) -> bool:
        ...

    def complete(self, messages: list[dict[str, Any]], *, max_tokens: int, timeout: float) -> str:
        ...


class RealLLMClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = CHAT_MODEL,
        url: str = OPENAI_CHAT_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = (OPENAI_API_KEY if api_key is None else api_key).strip()
        self.model = model
        self.url = url
        self.transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int = CHAT_MAX_TOKENS,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
    ) -> str:
        if not self.api_key:
            raise LLMConfigError(provider="openai", model=self.model, message="OPENAI_API_KEY is not set")
        return request_chat_completion(
            self.api_key,
            messages,
            model=self.model,
            max_tokens=max_tokens,
            timeout=timeout,
            url=self.url,
            transport=self.transport,
        )


def get_llm_client() -> LLMClient:
    return RealLLMClient()
