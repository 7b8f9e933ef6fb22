"""Tests for the AI text tools: provider calls, parsing, and fallbacks."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi import HTTPException

from src.pulsecrm.config import Environment, Settings
from src.pulsecrm.services.assistant import (
    HuggingFaceClient,
    TextAssistant,
    best_label,
    fallback_email,
    fallback_sentiment,
    fallback_summary,
    parse_email,
)


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, HF_API_KEY="hf-test", **overrides)


def _assistant(handler, settings: Settings | None = None) -> TextAssistant:
    settings = settings or _settings()
    client = HuggingFaceClient(
        settings.HF_API_KEY,
        "https://hf.example.com/models",
        transport=httpx.MockTransport(handler),
    )
    return TextAssistant(client, settings)


def _failing(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="model loading")


# ── Parsing ──────────────────────────────────────────────────────────────────


def test_best_label_handles_nested_lists():
    output = [[{"label": "negative", "score": 0.1}, {"label": "positive", "score": 0.8}]]
    assert best_label(output) == ("positive", 0.8)
    assert best_label({"label": "neutral", "score": 0.4}) == ("neutral", 0.4)
    assert best_label("garbage") == (None, None)


def test_parse_email():
    text = "Sure! Here it is.\nSubject: Next steps\nBody: Hi Ana,\nLet's talk.\n"
    assert parse_email(text) == ("Next steps", "Hi Ana,\nLet's talk.")
    assert parse_email("Subject: Only subject\nline two") == ("Only subject", "line two")
    assert parse_email("just a body") == ("", "just a body")
    assert parse_email("") == ("", "")


# ── Fallbacks ────────────────────────────────────────────────────────────────


def test_fallback_sentiment():
    assert fallback_sentiment("Thanks, perfect!")["sentiment"] == "POSITIVE"
    assert fallback_sentiment("There is a delay and a problem")["sentiment"] == "NEGATIVE"
    assert fallback_sentiment("Meeting on Tuesday") == {"sentiment": "NEUTRAL", "confidence": 0.5}


def test_fallback_summary_caps_length():
    assert fallback_summary("a\n\nb\nc\nd\ne") == "a b c d"
    long = fallback_summary("x" * 500)
    assert len(long) == 280
    assert long.endswith("...")


def test_fallback_email_defaults_name():
    email = fallback_email("  ", "Wants a quote")
    assert email["subject"] == "Following up on your project - there"
    assert email["body"].startswith("Hi there,")
    assert "Context: Wants a quote" in email["body"]


# ── Provider calls ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sentiment_from_provider():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[[{"label": "POSITIVE", "score": 0.97}]])

    result = await _assistant(handler).sentiment("Great work")

    assert result == {"sentiment": "POSITIVE", "confidence": 0.97}
    assert seen["auth"] == "Bearer hf-test"
    assert seen["body"]["inputs"] == "Great work"


@pytest.mark.asyncio
async def test_draft_email_from_provider():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"generated_text": "Subject: Hello\nBody: Hi Bo,\nThanks."}])

    result = await _assistant(handler).draft_email("Bo", "Asked about pricing")
    assert result == {"subject": "Hello", "body": "Hi Bo,\nThanks."}


@pytest.mark.asyncio
async def test_provider_failure_falls_back():
    assistant = _assistant(_failing)

    assert (await assistant.sentiment("thanks"))["sentiment"] == "POSITIVE"
    assert (await assistant.summary("one\ntwo"))["summary"] == "one two"
    assert (await assistant.draft_email("Ana", "ctx"))["subject"].endswith("Ana")
    improved = (await assistant.improve_proposal("Build a website"))["improved_proposal"]
    assert improved.startswith("Improved proposal")


@pytest.mark.asyncio
async def test_missing_api_key_falls_back_without_calling_provider():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[])

    settings = Settings(_env_file=None, HF_API_KEY="")
    assistant = _assistant(handler, settings)

    assert (await assistant.summary("hello"))["summary"] == "hello"
    assert calls == []
    assert assistant.diagnostics()["provider_configured"] is False


@pytest.mark.asyncio
async def test_fail_hard_surfaces_provider_errors_outside_production():
    assistant = _assistant(_failing, _settings(AI_FAIL_HARD=True))
    with pytest.raises(HTTPException) as exc_info:
        await assistant.sentiment("thanks")
    assert exc_info.value.status_code == 502

    production = _assistant(_failing, _settings(AI_FAIL_HARD=True, ENVIRONMENT=Environment.production))
    assert production.fail_hard is False
    assert (await production.sentiment("thanks"))["sentiment"] == "POSITIVE"
