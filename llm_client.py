"""
Completion Service Client
=========================

Thin wrapper around the Anthropic Messages API. Every route that talks to the
model goes through `complete` (one request, one reply) or `stream` (fragments
as they arrive), so the rest of the code only deals with plain turns and a
normalized finish reason.

Author: EduGenie Team
"""

from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Optional

import anthropic

from config import config

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"

FINISH_STOP = "stop"
FINISH_LENGTH = "length"

# Anthropic stop reasons -> provider-neutral finish reasons
_FINISH_REASONS = {
    "end_turn": FINISH_STOP,
    "stop_sequence": FINISH_STOP,
    "max_tokens": FINISH_LENGTH,
}


@dataclass(frozen=True)
class ConversationTurn:
    """One message in the transcript sent to the model"""
    role: str
    content: str

    def as_message(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionResult:
    """Text and finish reason of a single completion call"""
    text: str = ""
    finish_reason: str = ""


@dataclass(frozen=True)
class StreamFragment:
    """
    One piece of a streamed completion

    Text fragments carry an empty finish_reason; the last fragment of a
    stream has empty text and the finish reason.
    """
    text: str = ""
    finish_reason: str = ""


_client: Optional[anthropic.AsyncAnthropic] = None


def get_client() -> anthropic.AsyncAnthropic:
    """Lazy-init the shared async Anthropic client"""
    global _client
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
    return _client


def normalize_finish_reason(stop_reason: Optional[str]) -> str:
    if not stop_reason:
        return ""
    return _FINISH_REASONS.get(stop_reason, stop_reason)


def build_request(
    turns: Iterable[ConversationTurn],
    max_tokens: int,
    temperature: float,
    model: Optional[str] = None,
) -> dict:
    """
    Convert ordered turns into Messages API keyword arguments

    System turns go to the `system` parameter. The API wants a user-first,
    alternating transcript, so leading assistant turns are dropped and
    adjacent turns with the same role are merged.

    Args:
        turns: Ordered conversation turns
        max_tokens: Output token ceiling for this call
        temperature: Sampling temperature
        model: Model identifier (defaults to config.ANTHROPIC_MODEL)

    Returns:
        dict: kwargs for `messages.create` / `messages.stream`
    """
    system_parts = []
    messages = []

    for turn in turns:
        if not turn.content:
            continue
        if turn.role == SYSTEM:
            system_parts.append(turn.content)
            continue
        if not messages and turn.role != USER:
            continue
        if messages and messages[-1]["role"] == turn.role:
            messages[-1]["content"] += "\n\n" + turn.content
        else:
            messages.append(turn.as_message())

    kwargs = {
        "model": model or config.ANTHROPIC_MODEL,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": messages,
    }
    if system_parts:
        kwargs["system"] = "\n\n".join(system_parts)
    return kwargs


def _response_text(message) -> str:
    blocks = getattr(message, "content", None) or []
    return "".join(
        getattr(block, "text", "") or ""
        for block in blocks
        if getattr(block, "type", "text") == "text"
    )


async def complete(
    turns: Iterable[ConversationTurn],
    max_tokens: int,
    temperature: float = 0.7,
    model: Optional[str] = None,
) -> CompletionResult:
    """
    Issue one completion request

    Args:
        turns: Ordered conversation turns
        max_tokens: Output token ceiling
        temperature: Sampling temperature
        model: Optional model override

    Returns:
        CompletionResult: Reply text and normalized finish reason, both
        defaulting to "" when the response lacks them

    Raises:
        anthropic.APIError: Transport and provider errors propagate unchanged
    """
    kwargs = build_request(turns, max_tokens, temperature, model)
    message = await get_client().messages.create(**kwargs)
    return CompletionResult(
        text=_response_text(message),
        finish_reason=normalize_finish_reason(getattr(message, "stop_reason", None)),
    )


async def stream(
    turns: Iterable[ConversationTurn],
    max_tokens: int,
    temperature: float = 0.5,
    model: Optional[str] = None,
) -> AsyncIterator[StreamFragment]:
    """
    Stream one completion as fragments

    Yields text fragments as they arrive, then a final empty fragment
    carrying the finish reason.
    """
    kwargs = build_request(turns, max_tokens, temperature, model)
    async with get_client().messages.stream(**kwargs) as response:
        async for text in response.text_stream:
            if text:
                yield StreamFragment(text=text)
        final = await response.get_final_message()

    yield StreamFragment(finish_reason=normalize_finish_reason(getattr(final, "stop_reason", None)))
