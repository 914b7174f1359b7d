"""
Quiz Generation and Adaptive Analysis
=====================================

Generates multiple-choice quizzes, scores submitted answers, and asks the
model for a strengths/weaknesses report. Earlier results can be passed back
in so the next quiz leans on the learner's weak areas.

Author: EduGenie Team
"""

import asyncio
import string
from typing import Any, Awaitable, Callable, Iterable, Optional

import anthropic

import llm_client
from json_extract import MalformedOutput, extract_json, find_array
from llm_client import SYSTEM, USER, ConversationTurn

MAX_RETRIES = 5
BASE_BACKOFF = 1.0  # seconds, doubled after each failed attempt

QUIZ_MAX_TOKENS = 3000
ANALYSIS_MAX_TOKENS = 1200
MAX_PREVIOUS_RESULTS = 5

OPTION_KEYS = string.ascii_uppercase


def is_retryable(error: Exception) -> bool:
    """Rate limits, dropped connections and provider-side 5xx are worth retrying"""
    if isinstance(error, (anthropic.RateLimitError, anthropic.APIConnectionError)):
        return True
    return isinstance(error, anthropic.APIStatusError) and error.status_code >= 500


async def call_with_retry(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = MAX_RETRIES,
    base_backoff: float = BASE_BACKOFF,
) -> Any:
    """
    Await fn() with exponential backoff on transient provider errors

    Non-retryable errors are raised immediately. After the last attempt the
    last transient error is raised.
    """
    for attempt in range(max_retries):
        try:
            return await fn()
        except anthropic.APIError as e:
            if not is_retryable(e) or attempt == max_retries - 1:
                raise
            backoff = base_backoff * (2 ** attempt)
            print(f"[quiz] Retry {attempt + 1}/{max_retries} after {type(e).__name__} (backoff: {backoff:.1f}s)")
            await asyncio.sleep(backoff)


# ============================================================================
# NORMALIZATION
# ============================================================================

def _normalize_options(raw: Any) -> dict:
    if isinstance(raw, dict):
        options = {str(k).strip().upper(): str(v).strip() for k, v in raw.items() if str(v).strip()}
    elif isinstance(raw, list):
        options = {OPTION_KEYS[i]: str(v).strip() for i, v in enumerate(raw[:len(OPTION_KEYS)]) if str(v).strip()}
    else:
        return {}
    return options


def _resolve_answer(raw: Any, options: dict) -> Optional[str]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        keys = list(options)
        return keys[raw] if 0 <= raw < len(keys) else None
    if not isinstance(raw, str) or not raw.strip():
        return None

    answer = raw.strip()
    if answer.upper() in options:
        return answer.upper()
    # "B) Paris" / "B. Paris"
    if len(answer) > 1 and answer[1] in ").:" and answer[0].upper() in options:
        return answer[0].upper()
    for key, text in options.items():
        if text.lower() == answer.lower():
            return key
    return None


def normalize_question(raw: Any) -> Optional[dict]:
    """Return a {question, options, correctAnswer} dict, or None if unusable"""
    if not isinstance(raw, dict):
        return None

    question = raw.get("question") or raw.get("prompt")
    if not isinstance(question, str) or not question.strip():
        return None

    options = _normalize_options(raw.get("options") or raw.get("choices"))
    if len(options) < 2:
        return None

    answer = None
    for field in ("correctAnswer", "answer", "correct_answer", "correct"):
        if field in raw:
            answer = _resolve_answer(raw[field], options)
            break
    if answer is None:
        return None

    normalized = {"question": question.strip(), "options": options, "correctAnswer": answer}
    explanation = raw.get("explanation")
    if isinstance(explanation, str) and explanation.strip():
        normalized["explanation"] = explanation.strip()
    return normalized


def normalize_quiz(data: Any, topic: str) -> dict:
    """
    Bring heterogeneous quiz payloads into one shape

    Accepts {"quiz": [...]}, {"questions": [...]} or a bare list.

    Returns:
        dict: {"title", "questions"}; malformed questions are dropped
    """
    if isinstance(data, dict) and not isinstance(data.get("questions"), list) and isinstance(data.get("quiz"), list):
        items = data["quiz"]
    else:
        items = find_array(data, "questions")

    questions = [q for q in (normalize_question(item) for item in items) if q]

    title = data.get("title") if isinstance(data, dict) else None
    if not isinstance(title, str) or not title.strip():
        title = f"{topic} Quiz"
    return {"title": title.strip(), "questions": questions}


def _answer_for(user_answers: Any, index: int) -> Optional[str]:
    if isinstance(user_answers, dict):
        value = user_answers.get(str(index), user_answers.get(index))
    elif isinstance(user_answers, list):
        value = user_answers[index] if index < len(user_answers) else None
    else:
        value = None
    return value.strip().upper() if isinstance(value, str) and value.strip() else None


def score_quiz(quiz: dict, user_answers: Any) -> dict:
    """
    Score answers against a normalized quiz

    Args:
        quiz: {"questions": [...]} as produced by normalize_quiz
        user_answers: {index: letter} (string or int keys) or a list of letters

    Returns:
        dict: score, total, per-question review and the missed questions
    """
    questions = (quiz or {}).get("questions") or []
    review = []
    missed = []
    score = 0

    for idx, question in enumerate(questions):
        correct = question.get("correctAnswer")
        given = _answer_for(user_answers, idx)
        is_correct = given is not None and given == correct
        if is_correct:
            score += 1
        else:
            missed.append(question.get("question", ""))
        review.append({
            "question": question.get("question", ""),
            "userAnswer": given,
            "correctAnswer": correct,
            "isCorrect": is_correct,
        })

    return {"score": score, "total": len(questions), "review": review, "missed": missed}


def normalize_analysis(data: Any) -> dict:
    data = data if isinstance(data, dict) else {}

    def _strings(value) -> list:
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if str(v).strip()]

    summary = data.get("summary")
    return {
        "summary": summary.strip() if isinstance(summary, str) else "",
        "strengths": _strings(data.get("strengths")),
        "weaknesses": _strings(data.get("weaknesses")),
        "focusRecommendations": _strings(data.get("focusRecommendations") or data.get("recommendations")),
    }


# ============================================================================
# PROMPTS
# ============================================================================

def format_previous_results(previous_results: Optional[Iterable]) -> str:
    lines = []
    for result in list(previous_results or [])[-MAX_PREVIOUS_RESULTS:]:
        if not isinstance(result, dict):
            continue
        line = f"- {result.get('topic', 'Unknown topic')}: {result.get('score', '?')}/{result.get('total', '?')}"
        weaknesses = result.get("weaknesses") or []
        if isinstance(weaknesses, list) and weaknesses:
            line += f" (weak areas: {', '.join(str(w) for w in weaknesses)})"
        lines.append(line)
    return "\n".join(lines)


def build_quiz_prompt(topic: str, language: str, question_count: int, previous_results=None) -> str:
    history = format_previous_results(previous_results)
    adaptive = ""
    if history:
        adaptive = f"""

The learner's recent quiz results:
{history}

Give extra weight to the weak areas above, but still cover the topic broadly."""

    return f"""Generate {question_count} multiple-choice quiz questions on the topic "{topic}".
Language: {language}.{adaptive}

CRITICAL RULES:
- Return ONLY valid JSON
- No markdown, no explanations, no text before or after the JSON
- Every question has exactly four options A, B, C and D
- "correctAnswer" is the letter of the correct option

JSON FORMAT:
{{
  "title": "string",
  "questions": [
    {{
      "question": "string",
      "options": {{"A": "string", "B": "string", "C": "string", "D": "string"}},
      "correctAnswer": "A",
      "explanation": "one sentence"
    }}
  ]
}}"""


# ============================================================================
# OPERATIONS
# ============================================================================

async def generate_quiz(
    topic: str,
    language: str = "English",
    question_count: int = 10,
    previous_results: Optional[list] = None,
) -> dict:
    """
    Generate a normalized quiz, retrying transient provider errors

    Raises:
        anthropic.RateLimitError: Quota still exhausted after all retries
        ValueError: The model did not return a usable quiz
    """
    print(f"[quiz] Generating {question_count} questions on '{topic}' ({language})")
    turns = [
        ConversationTurn(SYSTEM, "You are a strict JSON quiz generator for students."),
        ConversationTurn(USER, build_quiz_prompt(topic, language, question_count, previous_results)),
    ]

    result = await call_with_retry(
        lambda: llm_client.complete(turns, max_tokens=QUIZ_MAX_TOKENS, temperature=0.4)
    )

    if not result.text.strip():
        raise ValueError("Empty AI response")

    parsed = extract_json(result.text, expect="object")
    if isinstance(parsed, MalformedOutput):
        # Some replies are a bare list of questions
        parsed = extract_json(result.text, expect="array")
    if isinstance(parsed, MalformedOutput):
        print(f"[quiz] No JSON found in reply: {result.text[:200]}")
        raise ValueError("AI did not return valid JSON")

    quiz = normalize_quiz(parsed.value, topic)
    if not quiz["questions"]:
        raise ValueError("AI did not return valid JSON")

    print(f"[quiz] Generated {len(quiz['questions'])} questions")
    return quiz


async def analyze_quiz(topic: str, quiz: dict, user_answers: Any) -> dict:
    """
    Score a submitted quiz and ask the model for a learning report

    Returns:
        dict: summary, strengths, weaknesses, focusRecommendations, score, total
    """
    scored = score_quiz(quiz, user_answers)
    review_lines = "\n".join(
        f"{i + 1}. {item['question']} | answered: {item['userAnswer'] or 'no answer'} | "
        f"correct: {item['correctAnswer']} | {'RIGHT' if item['isCorrect'] else 'WRONG'}"
        for i, item in enumerate(scored["review"])
    )

    prompt = f"""A student finished a quiz on "{topic}" and scored {scored['score']}/{scored['total']}.

Question review:
{review_lines}

Analyze their performance. Return ONLY JSON:
{{
  "summary": "two encouraging sentences",
  "strengths": ["concept they understand"],
  "weaknesses": ["concept they should revisit"],
  "focusRecommendations": ["short, concrete study action"]
}}"""

    print(f"[quiz] Analyzing '{topic}' ({scored['score']}/{scored['total']})")
    result = await call_with_retry(
        lambda: llm_client.complete([ConversationTurn(USER, prompt)], max_tokens=ANALYSIS_MAX_TOKENS, temperature=0.3)
    )

    parsed = extract_json(result.text, expect="object")
    if isinstance(parsed, MalformedOutput):
        raise ValueError("AI did not return valid JSON")

    analysis = normalize_analysis(parsed.value)
    analysis["score"] = scored["score"]
    analysis["total"] = scored["total"]
    return analysis
