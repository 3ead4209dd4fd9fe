import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel

from flf_coach.core.context_builder import UserContext
from flf_coach.core.meal_signals import LoggingClassifier, get_logging_classifier
from flf_coach.core.prompts import build_system_prompt
from flf_coach.services.food_log_block import ensure_food_log_block
from flf_coach.services.llm import (
    CHAT_MAX_TOKENS,
    PROVIDER_TIMEOUT_SECONDS,
    LLMClient,
    LLMRequestError,
    LLMTimeoutError,
    build_chat_messages,
    get_llm_client,
)

router = APIRouter(tags=["chat"])
logger = logging.getLogger("uvicorn.error")

GENERIC_ERROR = "Something went wrong. Please try again later."
INVALID_REQUEST_ERROR = "Backend received an invalid request. Check that the app is using the latest version."
TIMEOUT_ERROR = "This is taking longer than usual. Please try again."


class ChatResponse(BaseModel):
    reply: Optional[str] = None
    error: Optional[str] = None


class DebugResponse(BaseModel):
    ok: bool
    hasApiKey: bool


def error_response(message: str) -> ChatResponse:
    return ChatResponse(reply=None, error=message)


def coerce_turns(raw_messages: list[Any]) -> list[dict[str, str]]:
    turns: list[dict[str, str]] = []
    for item in raw_messages:
        if not isinstance(item, dict):
            turns.append({"role": "user", "content": ""})
            continue
        role = item.get("role") or "user"
        content = item.get("content")
        turns.append({"role": str(role), "content": "" if content is None else str(content)})
    return turns


def last_user_content(turns: list[dict[str, str]]) -> str:
    if turns and turns[-1]["role"] == "user":
        return turns[-1]["content"]
    return ""


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_exclude_unset=True,
    status_code=status.HTTP_200_OK,
)
def chat(
    payload: Any = Body(default=None),
    llm_client: LLMClient = Depends(get_llm_client),
    classify: LoggingClassifier = Depends(get_logging_classifier),
) -> ChatResponse:
    if not llm_client.is_configured():
        logger.error("chat_config_error detail=OPENAI_API_KEY is not set")
        return error_response(GENERIC_ERROR)

    body = payload if isinstance(payload, dict) else {}
    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list):
        logger.error(
            "chat_invalid_request keys=%s messages_type=%s",
            sorted(body.keys()),
            type(raw_messages).__name__,
        )
        return error_response(INVALID_REQUEST_ERROR)

    turns = coerce_turns(raw_messages)
    system_prompt = build_system_prompt(UserContext.from_payload(body.get("userContext")), food_log_directive=True)
    image_base64 = body.get("imageBase64")
    provider_messages = build_chat_messages(
        system_prompt,
        turns,
        image_base64 if isinstance(image_base64, str) else None,
    )

    try:
        reply = llm_client.complete(provider_messages, max_tokens=CHAT_MAX_TOKENS, timeout=PROVIDER_TIMEOUT_SECONDS)
    except LLMTimeoutError as exc:
        logger.warning("chat_provider_timeout detail=%s", str(exc))
        return error_response(TIMEOUT_ERROR)
    except LLMRequestError as exc:
        logger.error("chat_provider_error status=%s detail=%s", exc.status_code, str(exc))
        return error_response(GENERIC_ERROR)
    except Exception as exc:
        logger.exception("chat_unhandled_error detail=%s", str(exc))
        return error_response(GENERIC_ERROR)

    try:
        reply = ensure_food_log_block(reply, last_user_content(turns), llm_client, classify)
    except Exception as exc:
        # The first completion is still a valid answer without the block.
        logger.exception("chat_food_log_error detail=%s", str(exc))
    return ChatResponse(reply=reply)


@router.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/debug", response_model=DebugResponse)
def debug(llm_client: LLMClient = Depends(get_llm_client)) -> DebugResponse:
    return DebugResponse(ok=True, hasApiKey=llm_client.is_configured())
