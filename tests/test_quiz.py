"""Tests for quiz: normalization, scoring, retries and generation."""

import json
from unittest.mock import AsyncMock, patch

import anthropic
import httpx
import pytest

import quiz
from quiz import (
    call_with_retry,
    format_previous_results,
    normalize_analysis,
    normalize_question,
    normalize_quiz,
    score_quiz,
)

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _rate_limit_error() -> anthropic.RateLimitError:
    return anthropic.RateLimitError("rate limited", response=httpx.Response(429, request=_REQUEST), body=None)


def _bad_request_error() -> anthropic.BadRequestError:
    return anthropic.BadRequestError("bad request", response=httpx.Response(400, request=_REQUEST), body=None)


def _server_error() -> anthropic.InternalServerError:
    return anthropic.InternalServerError("overloaded", response=httpx.Response(529, request=_REQUEST), body=None)


QUIZ_SHAPE = {
    "quiz": [
        {"question": "2 + 2?", "options": {"A": "3", "B": "4", "C": "5", "D": "6"}, "answer": "B"},
        {"question": "Capital of France?", "options": ["Berlin", "Paris", "Rome", "Madrid"], "answer": "Paris"},
    ]
}

QUESTIONS_SHAPE = {
    "title": "Arithmetic",
    "questions": [
        {
            "question": "3 * 3?",
            "options": {"a": "6", "b": "9"},
            "correctAnswer": "b",
            "explanation": "Three threes are nine.",
        },
    ],
}


# ═══════════════════════════════════════════════════════════════════
# Normalization
# ═══════════════════════════════════════════════════════════════════


class TestNormalizeQuiz:
    def test_quiz_key_shape(self):
        result = normalize_quiz(QUIZ_SHAPE, "Math")
        assert result["title"] == "Math Quiz"
        assert [q["correctAnswer"] for q in result["questions"]] == ["B", "B"]
        assert result["questions"][1]["options"] == {"A": "Berlin", "B": "Paris", "C": "Rome", "D": "Madrid"}

    def test_questions_key_shape(self):
        result = normalize_quiz(QUESTIONS_SHAPE, "Math")
        assert result["title"] == "Arithmetic"
        assert result["questions"] == [{
            "question": "3 * 3?",
            "options": {"A": "6", "B": "9"},
            "correctAnswer": "B",
            "explanation": "Three threes are nine.",
        }]

    def test_bare_list(self):
        result = normalize_quiz(QUIZ_SHAPE["quiz"], "Math")
        assert len(result["questions"]) == 2

    def test_malformed_questions_dropped(self):
        data = {"questions": [
            {"question": "No options", "answer": "A"},
            {"question": "Bad answer", "options": ["x", "y"], "answer": "Z"},
            "not a dict",
            {"question": "Good", "options": ["x", "y"], "answer": "A) x"},
        ]}
        result = normalize_quiz(data, "T")
        assert [q["question"] for q in result["questions"]] == ["Good"]
        assert result["questions"][0]["correctAnswer"] == "A"

    def test_integer_answer_index(self):
        q = normalize_question({"question": "Pick", "options": ["x", "y", "z"], "answer": 2})
        assert q["correctAnswer"] == "C"

    def test_nothing_usable(self):
        assert normalize_quiz({"message": "sorry"}, "T")["questions"] == []


class TestScoreQuiz:
    def test_exact_key_matches_only(self):
        normalized = normalize_quiz(QUIZ_SHAPE, "Math")
        result = score_quiz(normalized, {"0": "b", "1": "Paris"})
        assert result["score"] == 1
        assert result["total"] == 2
        assert result["missed"] == ["Capital of France?"]
        assert result["review"][0]["isCorrect"] is True
        assert result["review"][1]["userAnswer"] == "PARIS"

    def test_list_answers_and_missing(self):
        normalized = normalize_quiz(QUIZ_SHAPE, "Math")
        result = score_quiz(normalized, ["B"])
        assert result["score"] == 1
        assert result["review"][1]["userAnswer"] is None


class TestNormalizeAnalysis:
    def test_every_key_present(self):
        assert normalize_analysis({"summary": " ok "}) == {
            "summary": "ok",
            "strengths": [],
            "weaknesses": [],
            "focusRecommendations": [],
        }

    def test_non_dict(self):
        assert normalize_analysis(["x"])["summary"] == ""


class TestPreviousResults:
    def test_only_last_five_used(self):
        results = [{"topic": f"T{i}", "score": i, "total": 10, "weaknesses": ["w"]} for i in range(8)]
        text = format_previous_results(results)
        assert "T2" not in text
        assert "T3" in text and "T7" in text


# ═══════════════════════════════════════════════════════════════════
# Retry
# ═══════════════════════════════════════════════════════════════════


class TestCallWithRetry:
    @pytest.mark.asyncio()
    async def test_rate_limit_retried_with_doubling_backoff(self):
        fn = AsyncMock(side_effect=_rate_limit_error())
        with patch.object(quiz.asyncio, "sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(anthropic.RateLimitError):
                await call_with_retry(fn)
        assert fn.await_count == 5
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio()
    async def test_recovers_after_transient_error(self):
        fn = AsyncMock(side_effect=[_server_error(), "ok"])
        with patch.object(quiz.asyncio, "sleep", new_callable=AsyncMock):
            assert await call_with_retry(fn) == "ok"
        assert fn.await_count == 2

    @pytest.mark.asyncio()
    async def test_client_error_not_retried(self):
        fn = AsyncMock(side_effect=_bad_request_error())
        with patch.object(quiz.asyncio, "sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(anthropic.BadRequestError):
                await call_with_retry(fn)
        assert fn.await_count == 1
        sleep.assert_not_awaited()


# ═══════════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════════


class TestGenerateQuiz:
    @pytest.mark.asyncio()
    async def test_fenced_reply_normalized(self, script_completion):
        fake = script_completion((f"```json\n{json.dumps(QUIZ_SHAPE)}\n```", "stop"))
        result = await quiz.generate_quiz("Math", question_count=2, previous_results=[
            {"topic": "Math", "score": 3, "total": 10, "weaknesses": ["fractions"]},
        ])
        assert len(result["questions"]) == 2
        prompt = fake.calls[0]["turns"][-1].content
        assert "fractions" in prompt
        assert "2" in prompt

    @pytest.mark.asyncio()
    async def test_invalid_reply_raises(self, script_completion):
        script_completion(("I'm not able to do that.", "stop"))
        with pytest.raises(ValueError, match="valid JSON"):
            await quiz.generate_quiz("Math")


class TestAnalyzeQuiz:
    @pytest.mark.asyncio()
    async def test_score_comes_from_server(self, script_completion):
        script_completion((json.dumps({
            "summary": "Good work.",
            "strengths": ["addition"],
            "weaknesses": ["geography"],
            "focusRecommendations": ["Review capitals"],
            "score": 99,
        }), "stop"))
        normalized = normalize_quiz(QUIZ_SHAPE, "Math")
        result = await quiz.analyze_quiz("Math", normalized, {"0": "B", "1": "A"})
        assert result["score"] == 1
        assert result["total"] == 2
        assert result["weaknesses"] == ["geography"]
