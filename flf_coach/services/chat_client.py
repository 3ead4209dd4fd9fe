import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from flf_coach.core.context_builder import build_user_context
from flf_coach.core.food_log import ParsedReply, parse_food_log_reply
from flf_coach.core.images import compress_and_encode_image
from flf_coach.core.prompts import DEFAULT_PHOTO_PROMPT, build_system_prompt
from flf_coach.db.models import ChatMessage
from flf_coach.services.app_state import (
    capture_challenge,
    record_chat_message,
    recent_history,
    resolve_api_key,
    resolve_backend_url,
    resolve_chatbot_context,
)
from flf_coach.services.llm import (
    CHAT_MODEL,
    OPENAI_CHAT_URL,
    LLMRequestError,
    LLMTimeoutError,
    build_chat_messages,
    http_timeout,
    request_chat_completion,
)

logger = logging.getLogger(__name__)

CLIENT_TIMEOUT_SECONDS = float(os.getenv("CLIENT_TIMEOUT_SECONDS", "25"))
DIRECT_MAX_TOKENS = int(os.getenv("DIRECT_MAX_TOKENS", "512"))
MAX_HISTORY_MESSAGES = 20

CLIENT_GENERIC_ERROR = "Something went wrong. Please try again."
CLIENT_CONNECT_ERROR = "We're having trouble connecting. Please try again."
CLIENT_TIMEOUT_ERROR = "This is taking longer than usual. Please try again."
PHOTO_UNAVAILABLE = "I can't analyze photos right now. Please try again later or type your question."

DIRECT_AUTH_ERROR = "API error. Check your API key and try again."
DIRECT_EMPTY_REPLY = "No response from the model."
DIRECT_TIMEOUT_ERROR = "Request timed out. Check your connection and API key, then try again."
DIRECT_NETWORK_ERROR = "Network error. Check your connection and API key."

FALLBACK_CHALLENGE = (
    "It sounds like you're hitting a rough patch—that's really common. Would you like me to remember this "
    "so I can check in later? You can also add it to your challenges in this chat so I keep it in mind. "
    "What would help most right now: a small step for today or just acknowledging that it's okay to have off days?"
)
FALLBACK_BUDGET = (
    "Your weekly target is in your Overview tab—you can see how many calories you have left for the week there. "
    "If you're under, you have room; if you're over, we can focus on the next week without guilt. "
    "Want to talk through a plan for the rest of the week?"
)
FALLBACK_WEIGHT = (
    "Daily weigh-ins are just data—they help you see trends, not define you. Keep logging in the Weigh In tab; "
    "over time the trend matters more than any single number. How are you feeling aside from the number?"
)
FALLBACK_GOAL = (
    "I've got your goal weight and weekly calorie target in mind. Consistency beats perfection: small, "
    "sustainable steps will get you there. What's one thing you can do today that feels doable?"
)
FALLBACK_DEFAULT = "I'm here to support you. Tell me about your wins, struggles, or questions—I'll do my best to help."


class ChatBusyError(RuntimeError):
    pass


@dataclass
class ChatTurn:
    user_message: ChatMessage
    assistant_message: ChatMessage
    parsed: ParsedReply
    captured_challenge: Optional[str] = None


def local_fallback(user_message: str) -> str:
    lower = user_message.lower()
    if "challeng" in lower or "hard" in lower or "struggle" in lower:
        return FALLBACK_CHALLENGE
    if "calor" in lower or "budget" in lower or "week" in lower:
        return FALLBACK_BUDGET
    if "weight" in lower or "scale" in lower:
        return FALLBACK_WEIGHT
    if "goal" in lower:
        return FALLBACK_GOAL
    return FALLBACK_DEFAULT


def history_turns(history: list[ChatMessage]) -> list[dict[str, str]]:
    return [
        {"role": "user" if message.role == "user" else "assistant", "content": message.content}
        for message in history[-MAX_HISTORY_MESSAGES:]
    ]


def backend_chat_url(base_url: str) -> str:
    return base_url.strip().strip("/") + "/chat"


class SupportChatService:
    """Routes one user message to the backend, the provider, or the local fallback.

    A service instance owns one conversation; only one send may be in flight.
    """

    def __init__(
        self,
        db: Session,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = CLIENT_TIMEOUT_SECONDS,
    ) -> None:
        self.db = db
        self.transport = transport
        self.timeout = timeout
        self._send_lock = threading.Lock()

    @property
    def is_sending(self) -> bool:
        return self._send_lock.locked()

    def build_system_prompt(self) -> str:
        return build_system_prompt(
            build_user_context(self.db),
            custom_instructions=resolve_chatbot_context(self.db),
        )

    def respond(
        self,
        user_message: str,
        image_base64: Optional[str] = None,
        history: Optional[list[ChatMessage]] = None,
    ) -> str:
        turns = history_turns(history or [])
        backend_url = resolve_backend_url(self.db)
        if backend_url:
            return self.call_backend(backend_chat_url(backend_url), user_message, turns, image_base64)
        if image_base64 is not None:
            return PHOTO_UNAVAILABLE
        api_key = resolve_api_key(self.db)
        if api_key:
            return self.call_direct(api_key, user_message, turns)
        return local_fallback(user_message)

    def call_backend(
        self,
        url: str,
        user_message: str,
        turns: list[dict[str, str]],
        image_base64: Optional[str] = None,
    ) -> str:
        body: dict[str, Any] = {
            "messages": [*turns, {"role": "user", "content": user_message}],
            "imageBase64": image_base64,
            "userContext": build_user_context(self.db).to_payload(),
        }
        try:
            with httpx.Client(transport=self.transport, timeout=http_timeout(self.timeout)) as http:
                response = http.post(url, json=body)
        except httpx.TimeoutException:
            logger.warning("backend_chat_timeout url=%s", url)
            return CLIENT_TIMEOUT_ERROR
        except httpx.HTTPError as exc:
            logger.warning("backend_chat_unreachable url=%s detail=%s", url, str(exc)[:200])
            return CLIENT_CONNECT_ERROR

        if response.status_code != 200:
            logger.warning("backend_chat_failed status=%s", response.status_code)
            return CLIENT_GENERIC_ERROR
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return CLIENT_GENERIC_ERROR
        reply = data.get("reply")
        if isinstance(reply, str) and reply:
            return reply.strip()
        error = data.get("error")
        return error if isinstance(error, str) and error else CLIENT_GENERIC_ERROR

    def call_direct(self, api_key: str, user_message: str, turns: list[dict[str, str]]) -> str:
        messages = build_chat_messages(
            self.build_system_prompt(),
            [*turns, {"role": "user", "content": user_message}],
        )
        try:
            return request_chat_completion(
                api_key,
                messages,
                model=CHAT_MODEL,
                max_tokens=DIRECT_MAX_TOKENS,
                timeout=self.timeout,
                url=OPENAI_CHAT_URL,
                transport=self.transport,
            )
        except LLMTimeoutError:
            return DIRECT_TIMEOUT_ERROR
        except LLMRequestError as exc:
            logger.warning("direct_chat_failed status=%s detail=%s", exc.status_code, str(exc))
            if exc.status_code is None:
                return DIRECT_NETWORK_ERROR
            if exc.status_code in (401, 403):
                return DIRECT_AUTH_ERROR
            if exc.status_code == 200:
                return DIRECT_EMPTY_REPLY
            return f"Request failed (status {exc.status_code}). Check your API key."

    def send(
        self,
        text: str,
        *,
        image_base64: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> ChatTurn:
        if not self._send_lock.acquire(blocking=False):
            raise ChatBusyError("A message is already being sent")
        try:
            history = recent_history(self.db, MAX_HISTORY_MESSAGES)
            user_row = record_chat_message(self.db, "user", text, image_ref=image_ref)
            reply = self.respond(text, image_base64, history)
            assistant_row = record_chat_message(self.db, "assistant", reply)
            captured = capture_challenge(self.db, text)
            if captured:
                logger.info("challenge_captured text=%r", captured)
            return ChatTurn(
                user_message=user_row,
                assistant_message=assistant_row,
                parsed=parse_food_log_reply(reply),
                captured_challenge=captured,
            )
        finally:
            self._send_lock.release()

    def send_photo(
        self,
        image: bytes,
        text: str = "",
        *,
        image_ref: Optional[str] = None,
    ) -> ChatTurn:
        encoded = compress_and_encode_image(image)
        if encoded is None:
            raise ValueError("Photo could not be read as an image")
        return self.send(text.strip() or DEFAULT_PHOTO_PROMPT, image_base64=encoded, image_ref=image_ref)
