"""Photo verification of a drink before it is logged, via Gemini vision.

A rejection (wrong drink, spoofed photo, signs of spiking) is a successful call
that returns ``allowed=False``. Transport problems raise CollaboratorError.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List

import requests

from sipsafe.errors import CollaboratorError

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
SUPPORTED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

PROMPT_TEMPLATE = "\n".join(
    [
        "You are a strict beverage safety verifier for a safety app.",
        "Expected logged drink type: {expected}.",
        "Analyze the provided photo and return JSON only, with no markdown or extra text.",
        "Required JSON keys:",
        "{{",
        '  "match": boolean,',
        '  "matchedDrinkType": string,',
        '  "spoofingLikely": boolean,',
        '  "druggingLikely": boolean,',
        '  "summary": string,',
        '  "concerns": string[]',
        "}}",
        "Rules:",
        "1) match must be true only when the observed drink appears to be the same type as the expected type.",
        "1a) For expected COCKTAIL, a mixed drink in a red solo cup can still be a valid match.",
        "2) Evaluate visible indicators of spoofing (screen replay, printed image, fake container cues, staging).",
        "3) Evaluate visible indicators of spiking or tampering (powders, residue, dissolved tablets, unusual cloudiness).",
        "4) If uncertain, set match=false and include why in concerns.",
        "5) Keep summary concise (<= 2 sentences).",
    ]
)


@dataclass(frozen=True)
class VerificationResult:
    allowed: bool
    summary: str
    matched_drink_type: str = "UNKNOWN"
    is_expected_drink_match: bool = False
    spoofing_likely: bool = False
    drugging_likely: bool = False
    concerns: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "summary": self.summary,
            "matched_drink_type": self.matched_drink_type,
            "is_expected_drink_match": self.is_expected_drink_match,
            "spoofing_likely": self.spoofing_likely,
            "drugging_likely": self.drugging_likely,
            "concerns": list(self.concerns),
        }


def sanitize_model_json(text: str) -> str:
    """Strip code fences and anything outside the outermost braces."""
    cleaned = text.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    first, last = cleaned.find("{"), cleaned.rfind("}")
    if first >= 0 and last > first:
        return cleaned[first:last + 1]
    return cleaned


def interpret_verdict(parsed: dict[str, Any], expected_label: str) -> VerificationResult:
    matched = str(parsed.get("matchedDrinkType") or "UNKNOWN").strip().upper() or "UNKNOWN"
    solo_cup_cocktail = expected_label.strip().upper() == "COCKTAIL" and "SOLO CUP" in matched
    is_match = bool(parsed.get("match")) or solo_cup_cocktail
    spoofing = bool(parsed.get("spoofingLikely"))
    drugging = bool(parsed.get("druggingLikely"))
    raw_concerns = parsed.get("concerns")
    raw_concerns = raw_concerns if isinstance(raw_concerns, list) else []
    concerns = [c.strip() for c in raw_concerns if isinstance(c, str) and c.strip()]
    summary = str(parsed.get("summary") or "").strip() or "Unable to verify this drink from the photo."
    return VerificationResult(
        allowed=is_match and not spoofing and not drugging,
        summary=summary,
        matched_drink_type=matched,
        is_expected_drink_match=is_match,
        spoofing_likely=spoofing,
        drugging_likely=drugging,
        concerns=concerns,
    )


class GeminiVerifier:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or DEFAULT_GEMINI_MODEL
        self.timeout = timeout
        self.http = session or requests.Session()

    def verify(self, photo_base64: str, expected_label: str, mime_type: str = "image/jpeg") -> VerificationResult:
        if not self.api_key:
            return VerificationResult(
                allowed=False,
                summary="Gemini key is missing. Verification could not run.",
                concerns=["Set GEMINI_API_KEY to enable photo verification."],
            )
        if mime_type not in SUPPORTED_MIME_TYPES:
            mime_type = "image/jpeg"

        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": PROMPT_TEMPLATE.format(expected=expected_label)},
                        {"inlineData": {"mimeType": mime_type, "data": photo_base64}},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0.1, "maxOutputTokens": 2048},
        }
        url = f"{GEMINI_API_BASE}/models/{self.model}:generateContent"
        try:
            response = self.http.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise CollaboratorError(f"Gemini request failed: {exc}") from exc
        if not response.ok:
            raise CollaboratorError(f"Gemini returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise CollaboratorError("Gemini response was not JSON.") from exc

        if not isinstance(data, dict):
            raise CollaboratorError("Gemini response was not a JSON object.")
        feedback = data.get("promptFeedback")
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            raise CollaboratorError(f"Gemini blocked the request: {block_reason}")
        text = _first_text(data.get("candidates"))
        if not text:
            raise CollaboratorError("Gemini response was empty.")

        try:
            parsed = json.loads(sanitize_model_json(text))
        except json.JSONDecodeError as exc:
            raise CollaboratorError(f"Could not parse Gemini verdict: {text[:200]}") from exc
        if not isinstance(parsed, dict):
            raise CollaboratorError("Gemini verdict was not a JSON object.")

        result = interpret_verdict(parsed, expected_label)
        logger.info(
            "Verified %r: allowed=%s matched=%s", expected_label, result.allowed, result.matched_drink_type
        )
        return result


def _first_text(candidates: Any) -> str:
    """Text of the first part of the first candidate, or "" if the shape is off."""
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    for part in parts:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            return part["text"]
    return ""
