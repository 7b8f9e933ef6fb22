"""AI text tools backed by Hugging Face inference.

Provides:
- HuggingFaceClient: thin httpx wrapper around the inference endpoint
- TextAssistant: sentiment, summary, follow-up email and proposal rewrite

Every tool degrades to a deterministic local fallback when the provider
fails, unless ``AI_FAIL_HARD`` is set outside production.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from fastapi import HTTPException, status

from src.pulsecrm.config import Environment, Settings
from src.pulsecrm.core.monitoring import assistant_requests_total

logger = structlog.get_logger(__name__)

USER_AGENT = "pulsecrm/1.0 (hf inference)"

POSITIVE_WORDS = ("ok", "thanks", "gracias", "merci", "perfect", "confirm", "great", "yes")
NEGATIVE_WORDS = ("delay", "problem", "problema", "urgent", "cancel", "error", "refund", "late")


class AssistantError(Exception):
    """Raised when the inference provider fails or times out."""


# ── Provider Client ─────────────────────────────────────────────────────────


class HuggingFaceClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def call(self, model: str, payload: dict[str, Any]) -> Any:
        """POST ``payload`` to ``model`` and return the decoded body.

        Raises:
            AssistantError: Missing key, non-2xx response, or timeout.
        """
        if not self._api_key:
            raise AssistantError("HF_API_KEY is not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/{model}",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "user-agent": USER_AGENT,
                    },
                )
        except httpx.TimeoutException as exc:
            raise AssistantError("Inference request timed out") from exc
        except httpx.HTTPError as exc:
            raise AssistantError(f"Inference request failed: {exc}") from exc

        if response.is_error:
            raise AssistantError(f"HF error {response.status_code}: {response.text[:600]}")
        try:
            return response.json()
        except ValueError:
            return response.text


# ── Output parsing ──────────────────────────────────────────────────────────


def best_label(output: Any) -> tuple[str | None, float | None]:
    """Pick the highest-scoring label from a classification response."""
    candidates = output
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], list):
        candidates = candidates[0]
    if isinstance(candidates, dict):
        candidates = [candidates]
    if not isinstance(candidates, list):
        return None, None

    scored = [c for c in candidates if isinstance(c, dict) and isinstance(c.get("score"), (int, float))]
    if not scored:
        return None, None
    best = max(scored, key=lambda c: c["score"])
    label = best.get("label")
    return (label if isinstance(label, str) else None), float(best["score"])


def _first_field(output: Any, field: str) -> str:
    if isinstance(output, list) and output:
        output = output[0]
    if isinstance(output, dict) and isinstance(output.get(field), str):
        return output[field]
    if isinstance(output, str) and field == "generated_text":
        return output
    return ""


def parse_email(text: str) -> tuple[str, str]:
    """Split ``Subject: ...`` / ``Body: ...`` model output."""
    normalized = (text or "").replace("\r\n", "\n").strip()
    if not normalized:
        return "", ""

    start = normalized.lower().find("subject:")
    lines = [line.rstrip() for line in (normalized[start:] if start >= 0 else normalized).split("\n")]
    subject_idx = next((i for i, line in enumerate(lines) if re.match(r"^subject\s*:", line, re.I)), None)
    body_idx = next((i for i, line in enumerate(lines) if re.match(r"^body\s*:", line, re.I)), None)
    subject = re.sub(r"^subject\s*:\s*", "", lines[subject_idx], flags=re.I).strip() if subject_idx is not None else ""

    if body_idx is not None:
        first = re.sub(r"^body\s*:\s*", "", lines[body_idx], flags=re.I)
        return subject, "\n".join([first, *lines[body_idx + 1:]]).strip()
    if subject_idx is not None:
        return subject, "\n".join(lines[subject_idx + 1:]).strip()
    return "", normalized


# ── Local fallbacks ─────────────────────────────────────────────────────────


def fallback_sentiment(text: str) -> dict[str, Any]:
    value = (text or "").lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in value)
    negative = sum(1 for word in NEGATIVE_WORDS if word in value)
    if positive > negative:
        return {"sentiment": "POSITIVE", "confidence": 0.62}
    if negative > positive:
        return {"sentiment": "NEGATIVE", "confidence": 0.62}
    return {"sentiment": "NEUTRAL", "confidence": 0.5}


def fallback_summary(text: str) -> str:
    lines = [line.strip() for line in (text or "").replace("\r\n", "\n").split("\n") if line.strip()]
    preview = " ".join(lines[:4])
    if len(preview) <= 280:
        return preview
    return preview[:277].strip() + "..."


def fallback_email(lead_name: str, lead_context: str) -> dict[str, str]:
    name = (lead_name or "").strip() or "there"
    context = fallback_summary(lead_context)
    body = [f"Hi {name},", "", "Thank you for your time."]
    if context:
        body.append(f"Context: {context}")
    body += [
        "Could we schedule a short call to confirm the next steps?",
        "Please share a few time slots that work for you.",
        "",
        "Best regards,",
    ]
    return {"subject": f"Following up on your project - {name}", "body": "\n".join(body)}


def fallback_proposal(text: str) -> str:
    source = fallback_summary(text) or (text or "").strip()
    if not source:
        return ""
    return "\n".join([
        "Improved proposal",
        "",
        source,
        "",
        "Deliverables:",
        "- Scoping and requirements sign-off",
        "- Detailed implementation plan",
        "- Progress tracking and reporting",
        "",
        "Next step: schedule a validation call.",
    ])


# ── Assistant ───────────────────────────────────────────────────────────────


class TextAssistant:
    def __init__(self, client: HuggingFaceClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    @property
    def fail_hard(self) -> bool:
        return self._settings.AI_FAIL_HARD and self._settings.ENVIRONMENT != Environment.production

    def _fallback(self, tool: str, exc: Exception) -> None:
        assistant_requests_total.labels(tool=tool, outcome="fallback").inc()
        logger.warning("assistant.fallback_used", tool=tool, error=str(exc))
        if self.fail_hard:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    @staticmethod
    def _ok(tool: str) -> None:
        assistant_requests_total.labels(tool=tool, outcome="success").inc()

    async def sentiment(self, text: str) -> dict[str, Any]:
        try:
            output = await self._client.call(
                self._settings.HF_SENTIMENT_MODEL,
                {"inputs": text, "options": {"wait_for_model": True}},
            )
        except AssistantError as exc:
            self._fallback("sentiment", exc)
            return fallback_sentiment(text)
        self._ok("sentiment")
        label, score = best_label(output)
        return {"sentiment": label or "UNKNOWN", "confidence": score or 0.0}

    async def summary(self, text: str) -> dict[str, str]:
        try:
            output = await self._client.call(
                self._settings.HF_SUMMARY_MODEL,
                {
                    "inputs": text,
                    "parameters": {"max_length": 150, "min_length": 60},
                    "options": {"wait_for_model": True},
                },
            )
        except AssistantError as exc:
            self._fallback("summary", exc)
            return {"summary": fallback_summary(text)}
        self._ok("summary")
        return {"summary": _first_field(output, "summary_text") or fallback_summary(text)}

    async def draft_email(self, lead_name: str, lead_context: str) -> dict[str, str]:
        prompt = "\n".join([
            "You are a professional assistant.",
            "Write a follow-up email for this lead.",
            "",
            f"Lead: {lead_name}",
            f"Context: {lead_context}",
            "",
            "Return exactly this format:",
            "Subject: <subject line>",
            "Body: <email body>",
            "",
        ])
        try:
            output = await self._client.call(
                self._settings.HF_INSTRUCT_MODEL,
                {
                    "inputs": prompt,
                    "parameters": {"max_new_tokens": 250, "return_full_text": False},
                    "options": {"wait_for_model": True},
                },
            )
        except AssistantError as exc:
            self._fallback("draft_email", exc)
            return fallback_email(lead_name, lead_context)
        self._ok("draft_email")
        subject, body = parse_email(_first_field(output, "generated_text"))
        if subject or body:
            return {"subject": subject, "body": body}
        return fallback_email(lead_name, lead_context)

    async def improve_proposal(self, proposal_text: str) -> dict[str, str]:
        prompt = "\n".join([
            "You are a business assistant.",
            "Improve this proposal text to make it clearer and more compelling:",
            "",
            proposal_text,
            "",
            "Return the improved version only.",
            "",
        ])
        try:
            output = await self._client.call(
                self._settings.HF_INSTRUCT_MODEL,
                {
                    "inputs": prompt,
                    "parameters": {"max_new_tokens": 350, "return_full_text": False},
                    "options": {"wait_for_model": True},
                },
            )
        except AssistantError as exc:
            self._fallback("improve_proposal", exc)
            return {"improved_proposal": fallback_proposal(proposal_text)}
        self._ok("improve_proposal")
        improved = _first_field(output, "generated_text").strip()
        return {"improved_proposal": improved or fallback_proposal(proposal_text)}

    def diagnostics(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": self._settings.ENVIRONMENT.value,
            "fail_hard": self.fail_hard,
            "provider_configured": self._client.configured,
            "models": {
                "sentiment": self._settings.HF_SENTIMENT_MODEL,
                "summary": self._settings.HF_SUMMARY_MODEL,
                "instruct": self._settings.HF_INSTRUCT_MODEL,
            },
        }
