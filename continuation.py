"""
Chunked Completion Reassembly
=============================

The model has a bounded output budget per call. Chat-style routes work around
it by asking the model to end a cut-short reply with a continuation marker,
then calling again with a "continue" turn until the reply is complete or a
chunk ceiling is reached.

Pipeline:
    Budget -> compose_turns -> llm_client.complete -> needs_continuation
           -> (bounded loop) -> stitch_completion / stream_completion

Author: EduGenie Team
"""

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional

import llm_client
from llm_client import (
    ASSISTANT,
    FINISH_LENGTH,
    SYSTEM,
    USER,
    CompletionResult,
    ConversationTurn,
    StreamFragment,
)

CONTINUATION_MARKER = "[[CONTINUE]]"

# Final turn when the caller explicitly asks for the rest of a previous reply
CONTINUE_DIRECTIVE = (
    "Continue your previous answer exactly where it stopped. "
    "Do not repeat anything you already wrote and do not restart the answer."
)

# Turn appended between chunks inside one request
CONTINUE_TURN = "continue"

# Appended to system prompts so the model knows how to signal truncation
CONTINUATION_INSTRUCTION = (
    f"If your answer will not fit in a single reply, stop at a natural break "
    f"and end the reply with {CONTINUATION_MARKER} on its own. "
    f"Never write {CONTINUATION_MARKER} anywhere else."
)

TRUNCATION_SUFFIX = "..."

# Streamed text held back so a trailing marker never reaches the client
_STREAM_HOLDBACK = len(CONTINUATION_MARKER) + 16


@dataclass(frozen=True)
class Budget:
    """Per-route token, character and chunk ceilings"""
    max_output_tokens: int
    max_input_tokens: int
    max_chunks: int
    approx_chars_per_token: int = 4
    history_limit: int = 6
    document_fraction: float = 0.55
    message_fraction: float = 0.25
    temperature: float = 0.7

    @property
    def max_input_chars(self) -> int:
        return self.max_input_tokens * self.approx_chars_per_token


TUTOR_BUDGET = Budget(max_output_tokens=1024, max_input_tokens=6000, max_chunks=3, history_limit=2)
DOCUMENT_CHAT_BUDGET = Budget(max_output_tokens=1024, max_input_tokens=7000, max_chunks=3, history_limit=6)
NOTES_BUDGET = Budget(
    max_output_tokens=2000,
    max_input_tokens=6000,
    max_chunks=2,
    history_limit=0,
    temperature=0.5,
)


class EmptyCompletionError(RuntimeError):
    """The first chunk of a reply came back empty"""


@dataclass
class ChunkAccumulator:
    """Request-scoped state of the stitch loop"""
    combined_text: str = ""
    chunk_count: int = 1
    needs_more: bool = False

    def append(self, chunk: str, separator: str = "\n\n"):
        if not chunk:
            return
        self.combined_text = f"{self.combined_text}{separator}{chunk}" if self.combined_text else chunk


@dataclass(frozen=True)
class StitchResult:
    text: str
    has_more: bool
    chunk_count: int


# ============================================================================
# BUDGET CALCULATOR
# ============================================================================

def per_document_budget(budget: Budget, document_count: int, fraction: Optional[float] = None) -> int:
    """
    Character allowance for each attached document

    A fraction of the input budget is split evenly across documents:
    floor(max_input_chars * fraction / max(document_count, 1)).
    """
    if fraction is None:
        fraction = budget.document_fraction
    return int(budget.max_input_chars * fraction // max(document_count, 1))


def message_budget(budget: Budget) -> int:
    return int(budget.max_input_chars * budget.message_fraction)


def truncate(text: str, limit: int) -> str:
    """Cut text to `limit` characters, marking the cut with an ellipsis"""
    if len(text) <= limit:
        return text
    return text[:max(limit, 0)].rstrip() + TRUNCATION_SUFFIX


# ============================================================================
# TURN COMPOSER
# ============================================================================

def _history_turns(history: Optional[Iterable], limit: int) -> List[ConversationTurn]:
    turns = []
    for entry in history or []:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role")
        text = entry.get("text", entry.get("content"))
        if role not in (USER, ASSISTANT) or not isinstance(text, str) or not text.strip():
            continue
        turns.append(ConversationTurn(role, text))

    if limit <= 0:
        return []
    return turns[-limit:]


def format_documents(documents: Iterable[dict], budget: Budget) -> str:
    """
    Render attached documents for the system turn

    Each document is truncated to its share of the input budget.
    """
    documents = list(documents)
    limit = per_document_budget(budget, len(documents))
    sections = []
    for idx, doc in enumerate(documents, 1):
        name = doc.get("name") or f"Document {idx}"
        content = truncate(doc.get("content") or "", limit)
        sections.append(f"=== DOCUMENT {idx}: {name} ===\n{content}")
    return "\n\n".join(sections)


def compose_turns(
    system_prompt: str,
    budget: Budget,
    message: str = "",
    history: Optional[Iterable] = None,
    documents: Optional[Iterable[dict]] = None,
    continue_request: bool = False,
) -> List[ConversationTurn]:
    """
    Build the ordered turn list for one request

    Args:
        system_prompt: Task instructions
        budget: Route budget (history limit, document and message shares)
        message: The user's message for this request
        history: Prior turns as {"role", "text"} dicts; malformed entries are skipped
        documents: Attached documents as {"name", "content"} dicts
        continue_request: Ask for the rest of the previous reply instead of
            answering `message`

    Returns:
        list: system turn, recent history, then exactly one final user turn
    """
    system = f"{system_prompt.strip()}\n\n{CONTINUATION_INSTRUCTION}"
    if documents:
        system += f"\n\nHere is the content of the attached documents:\n\n{format_documents(documents, budget)}"

    turns = [ConversationTurn(SYSTEM, system)]
    turns.extend(_history_turns(history, budget.history_limit))

    if continue_request:
        turns.append(ConversationTurn(USER, CONTINUE_DIRECTIVE))
    else:
        turns.append(ConversationTurn(USER, truncate(message.strip(), message_budget(budget))))
    return turns


# ============================================================================
# CONTINUATION DETECTOR
# ============================================================================

def ends_with_marker(text: str) -> bool:
    """Case-insensitive check for a trailing continuation marker"""
    tail = (text or "").rstrip()[-len(CONTINUATION_MARKER):]
    return tail.upper() == CONTINUATION_MARKER


def needs_continuation(text: str, finish_reason: str = "") -> bool:
    """
    True when the reply was cut short

    A length-truncated finish is authoritative even without the marker.
    """
    if finish_reason == FINISH_LENGTH:
        return True
    return ends_with_marker(text)


def _rstrip_markers(text: str) -> str:
    stripped = (text or "").rstrip()
    while ends_with_marker(stripped):
        stripped = stripped[:-len(CONTINUATION_MARKER)].rstrip()
    return stripped


def strip_continuation_marker(text: str) -> str:
    """Remove trailing continuation markers and surrounding whitespace"""
    return _rstrip_markers(text).strip()


# ============================================================================
# CHUNK STITCHER
# ============================================================================

Invoker = Callable[..., Awaitable[CompletionResult]]


async def stitch_completion(
    turns: List[ConversationTurn],
    budget: Budget,
    invoke: Optional[Invoker] = None,
    model: Optional[str] = None,
) -> StitchResult:
    """
    Call the model until the reply is complete or the chunk ceiling is hit

    Args:
        turns: Composed turns; a private copy is extended between chunks
        budget: Output tokens, temperature and max_chunks for this route
        invoke: Completion call (defaults to llm_client.complete)
        model: Optional model override

    Returns:
        StitchResult: Joined text, whether more remains un-fetched, and
        the number of calls made

    Raises:
        EmptyCompletionError: The first reply had no text
    """
    invoke = invoke or llm_client.complete
    turns = list(turns)

    async def call() -> CompletionResult:
        return await invoke(list(turns), max_tokens=budget.max_output_tokens, temperature=budget.temperature, model=model)

    result = await call()
    if not (result.text or "").strip():
        raise EmptyCompletionError("AI returned an empty response")

    acc = ChunkAccumulator()
    chunk = strip_continuation_marker(result.text)
    acc.append(chunk)
    acc.needs_more = needs_continuation(result.text, result.finish_reason)

    while acc.needs_more and acc.chunk_count < budget.max_chunks:
        turns.append(ConversationTurn(ASSISTANT, chunk))
        turns.append(ConversationTurn(USER, CONTINUE_TURN))

        result = await call()
        acc.chunk_count += 1
        if not (result.text or "").strip():
            print(f"Chunk {acc.chunk_count} came back empty, returning {len(acc.combined_text)} characters")
            acc.needs_more = False
            break

        chunk = strip_continuation_marker(result.text)
        acc.append(chunk)
        acc.needs_more = needs_continuation(result.text, result.finish_reason)

    has_more = acc.needs_more and acc.chunk_count >= budget.max_chunks
    return StitchResult(text=acc.combined_text.strip(), has_more=has_more, chunk_count=acc.chunk_count)


StreamFn = Callable[..., AsyncIterator[StreamFragment]]


async def stream_completion(
    turns: List[ConversationTurn],
    budget: Budget,
    stream: Optional[StreamFn] = None,
    model: Optional[str] = None,
    separator: str = "",
) -> AsyncIterator[str]:
    """
    Streaming counterpart of `stitch_completion`

    Fragments are forwarded as they arrive, except for a short tail that is
    held until the chunk ends so the continuation marker can be stripped.
    """
    stream = stream or llm_client.stream
    turns = list(turns)
    chunk_count = 0

    while True:
        chunk_count += 1
        sent = []
        held = ""
        finish_reason = ""

        async for fragment in stream(
            list(turns),
            max_tokens=budget.max_output_tokens,
            temperature=budget.temperature,
            model=model,
        ):
            if fragment.finish_reason:
                finish_reason = fragment.finish_reason
            if not fragment.text:
                continue
            if not sent and not held and chunk_count > 1 and separator:
                yield separator
            held += fragment.text
            if len(held) > _STREAM_HOLDBACK:
                ready, held = held[:-_STREAM_HOLDBACK], held[-_STREAM_HOLDBACK:]
                sent.append(ready)
                yield ready

        full_text = "".join(sent) + held
        if not full_text.strip():
            break

        more = needs_continuation(full_text, finish_reason)
        tail = _rstrip_markers(held) if ends_with_marker(held) else held
        if tail:
            yield tail

        if not more or chunk_count >= budget.max_chunks:
            break

        turns.append(ConversationTurn(ASSISTANT, strip_continuation_marker(full_text)))
        turns.append(ConversationTurn(USER, CONTINUE_TURN))
