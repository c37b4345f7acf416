"""
Client for the external essay evaluation service.

The service takes {"essay": "<plain text>"} and answers with an IELTS-style
band (0-9) plus feedback sections. It is opaque to us: any transport error,
non-2xx status or malformed body degrades to an "unavailable" result so a
submission never fails because grading did.
"""

import html
import logging
import re
from typing import Optional

import httpx

from app.config import ESSAY_EVALUATOR_URL, ESSAY_EVALUATOR_TIMEOUT_SECONDS, ESSAY_MAX_BAND

logger = logging.getLogger(__name__)

FEEDBACK_FIELDS = ("feedback", "grammar", "vocabulary", "coherence")

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_TAG_RE = re.compile(r"</?(p|div|br|li|h[1-6])\b[^>]*>", re.IGNORECASE)
_SPACES_RE = re.compile(r"[ \t]+")


def strip_html(markup: Optional[str]) -> str:
    """Rich-text editor HTML to plain text"""
    if not markup:
        return ""
    text = _BLOCK_TAG_RE.sub("\n", markup)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def safe_string(value) -> str:
    """Flatten text for storage: newlines/tabs to spaces, CR dropped, double quotes to single"""
    if value is None:
        return ""
    return (
        str(value)
        .replace("\n", " ")
        .replace("\r", "")
        .replace("\t", " ")
        .replace('"', "'")
    )


def build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=ESSAY_EVALUATOR_TIMEOUT_SECONDS)


def unavailable(reason: str) -> dict:
    return {
        "status": "unavailable",
        "score": 0,
        "error": reason,
        **{field: "" for field in FEEDBACK_FIELDS}
    }


def parse_evaluation(body) -> dict:
    """Validate and clean an evaluator response body"""
    if not isinstance(body, dict) or "score" not in body:
        return unavailable("Malformed evaluator response")

    try:
        band = float(body["score"])
    except (TypeError, ValueError):
        return unavailable("Non-numeric evaluator score")

    band = max(0.0, min(float(ESSAY_MAX_BAND), band))
    return {
        "status": "evaluated",
        "score": band,
        **{field: safe_string(body.get(field)) for field in FEEDBACK_FIELDS}
    }


async def evaluate_essay(essay_text: str) -> dict:
    """
    Send one essay to the evaluator.

    Returns:
        {"status": "evaluated", "score": band, "feedback": ..., ...}
        or an "unavailable" result with score 0
    """
    try:
        async with build_client() as client:
            resp = await client.post(ESSAY_EVALUATOR_URL, json={"essay": essay_text})
            resp.raise_for_status()
            body = resp.json()
    except httpx.HTTPStatusError as e:
        logger.warning("Essay evaluator returned %s", e.response.status_code)
        return unavailable(f"Evaluator returned HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.warning("Essay evaluator unreachable: %s", e)
        return unavailable("Evaluator unreachable")
    except ValueError:
        logger.warning("Essay evaluator returned non-JSON body")
        return unavailable("Malformed evaluator response")

    return parse_evaluation(body)
