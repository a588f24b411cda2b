"""
Gemini generateContent client.

Used for the deep-analysis summary and for preference extraction and
mapping.  Model availability changes under us (models are retired, a
model is published under v1beta before v1), so calls walk a prioritized
list of (model, api_version) candidates and stop at the first usable
text:

- Retryable failures (429, 5xx, timeouts) are retried on the same
  candidate with exponential backoff, up to MAX_RETRIES.
- Anything else (404 for a retired model, 400, an empty reply) moves on
  to the next candidate.
- A total attempt budget bounds the worst case across all candidates.

Candidates come from GEMINI_MODEL_CANDIDATES when set, a comma list of
``model@version`` entries (version defaults to v1beta), e.g.:

    GEMINI_MODEL_CANDIDATES=gemini-2.5-flash@v1beta,gemini-2.0-flash@v1
"""

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from enrichment_config import api_key, key_names
from upstream_http import ConfigurationError, UpstreamError, post_json

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

DEFAULT_CANDIDATES: Tuple[Tuple[str, str], ...] = (
    ("gemini-2.5-flash", "v1beta"),
    ("gemini-2.5-flash", "v1"),
    ("gemini-2.0-flash", "v1beta"),
    ("gemini-2.5-flash-lite", "v1"),
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class GenerationError(RuntimeError):
    """Every model candidate failed or returned nothing usable."""

    def __init__(self, message: str, attempts: Optional[List[str]] = None):
        super().__init__(message)
        self.attempts = attempts or []


@dataclass(frozen=True)
class Generation:
    text: str
    model: str
    api_version: str


def parse_candidates(raw: Optional[str]) -> List[Tuple[str, str]]:
    """``"a@v1,b"`` -> ``[("a", "v1"), ("b", "v1beta")]``.  Blank -> defaults."""
    if not raw or not raw.strip():
        return list(DEFAULT_CANDIDATES)
    out = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        model, _, version = entry.partition("@")
        out.append((model.strip(), version.strip() or "v1beta"))
    return out or list(DEFAULT_CANDIDATES)


def extract_text(result: Any) -> str:
    """Concatenated text of the first candidate's parts ("" if none)."""
    if not isinstance(result, dict):
        return ""
    candidates = result.get("candidates") or []
    if candidates:
        first = candidates[0] or {}
        parts = (first.get("content") or {}).get("parts")
        if parts:
            return "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if first.get("text"):
            return first["text"]
    return result.get("text") or ""


def finish_reason(result: Any) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    candidates = result.get("candidates") or []
    return (candidates[0] or {}).get("finishReason") if candidates else None


def parse_json_reply(text: str) -> Any:
    """Parse a JSON reply, tolerating a markdown code fence around it.

    Raises:
        ValueError: the reply is not JSON.
    """
    return json.loads(_FENCE_RE.sub("", text.strip()))


class GeminiClient:
    MAX_RETRIES = 2
    RETRY_BACKOFF = (1, 2)  # seconds before retry 1, retry 2
    MAX_ATTEMPTS = 6

    def __init__(
        self,
        candidates: Optional[List[Tuple[str, str]]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.candidates = candidates or parse_candidates(
            os.environ.get("GEMINI_MODEL_CANDIDATES")
        )
        self._sleep = sleep

    @staticmethod
    def _is_retryable(e: UpstreamError) -> bool:
        """429, 5xx and timeouts are retryable.  Other 4xx are not."""
        if e.provider_status in ("timeout", "exception"):
            return True
        return e.status_code == 429 or e.status_code >= 500

    def generate(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_output_tokens: int = 4096,
        caller: str = "generate",
    ) -> Generation:
        """Return the first non-empty generation across the candidates.

        Raises:
            ConfigurationError: no Gemini key.
            GenerationError: every candidate failed.
        """
        key = api_key("gemini")
        if not key:
            raise ConfigurationError(
                "GEMINI_API_KEY not configured", missing_keys=key_names("gemini"),
            )

        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": max_output_tokens,
            },
        }

        attempts: List[str] = []
        budget = self.MAX_ATTEMPTS
        for model, version in self.candidates:
            url = f"{GEMINI_BASE_URL}/{version}/models/{model}:generateContent"
            for attempt in range(1 + self.MAX_RETRIES):
                if budget <= 0:
                    break
                budget -= 1
                try:
                    result = post_json("gemini", f"{caller}:{model}@{version}", url,
                                       json_body=body, params={"key": key})
                except UpstreamError as e:
                    attempts.append(f"{model}@{version}: {e}")
                    if attempt < self.MAX_RETRIES and self._is_retryable(e):
                        sleep_time = self.RETRY_BACKOFF[attempt]
                        logger.info(
                            "Gemini %s@%s failed (attempt %d/%d), sleeping %ds before retry [caller=%s]",
                            model, version, attempt + 1, 1 + self.MAX_RETRIES,
                            sleep_time, caller,
                        )
                        self._sleep(sleep_time)
                        continue
                    logger.warning("Gemini %s@%s failed: %s [caller=%s]", model, version, e, caller)
                    break

                if finish_reason(result) in ("MAX_TOKENS", "LENGTH"):
                    logger.warning("Gemini %s@%s reply truncated", model, version)

                text = extract_text(result).strip()
                if not text:
                    attempts.append(f"{model}@{version}: empty response")
                    logger.warning("Gemini %s@%s returned no text [caller=%s]", model, version, caller)
                    break

                logger.info("Gemini %s@%s ok, %d chars [caller=%s]", model, version, len(text), caller)
                return Generation(text=text, model=model, api_version=version)

        raise GenerationError(
            f"All Gemini candidates failed ({len(attempts)} attempts)", attempts,
        )


# Module-level singleton
_client = GeminiClient()


# =============================================================================
# Deep-analysis summary
# =============================================================================

_SECTION_TITLES = {
    "flood": "FLOOD",
    "fire": "FIRE",
    "earthquake": "EARTHQUAKE",
    "crime": "CRIME",
    "schools": "SCHOOLS",
    "hospitals": "HOSPITALS",
    "transit": "TRANSIT",
    "greenSpace": "GREEN SPACE",
    "superfund": "SUPERFUND",
}


def build_summary_prompt(address: str, data: Dict[str, Any]) -> str:
    sections = "\n\n".join(
        f"{_SECTION_TITLES.get(name, name.upper())}:\n{json.dumps(value, indent=2)}"
        for name, value in data.items()
    )
    return (
        f"You are a real estate analyst. Generate a brief, concise summary "
        f"(2-3 paragraphs) for the property at {address} based on the "
        f"following available data:\n\n{sections}\n\n"
        "Provide a well-structured summary that:\n"
        "1. Highlights key risks (flood, fire, earthquake, crime, superfund sites) if data is available\n"
        "2. Mentions positive aspects (schools, hospitals, transit, green space) if data is available\n"
        "3. Is concise and easy to read (2-3 paragraphs max)\n"
        "4. Uses natural language, not technical jargon\n"
        "5. Focuses on what matters most for a homebuyer\n"
        "6. Only mentions data that is actually available\n\n"
        "Format the response as plain text, no markdown."
    )


def generate_analysis_summary(address: str, data: Dict[str, Any]) -> Dict[str, str]:
    """Summary prose for the found domains in *data*.

    *data* must already be filtered to usable domains; nothing here
    inspects error fields.
    """
    gen = _client.generate(
        build_summary_prompt(address, data),
        temperature=0.7,
        max_output_tokens=4096,
        caller="summary",
    )
    return {"summary": gen.text, "model": gen.model, "apiVersion": gen.api_version}
