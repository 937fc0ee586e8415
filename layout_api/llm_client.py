from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import requests

log = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-pro").strip()
GEMINI_FALLBACK_MODEL = os.getenv("GEMINI_FALLBACK_MODEL", "gemini-1.5-flash").strip()
GEMINI_ENDPOINT_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

try:
    TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
except Exception:
    TEMPERATURE = 0.7
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "8192"))
except Exception:
    LLM_MAX_TOKENS = 8192
try:
    LLM_TIMEOUT_SECS = int(os.getenv("LLM_TIMEOUT_SECS", "60"))
except Exception:
    LLM_TIMEOUT_SECS = 60


def status() -> Dict[str, Any]:
    return {
        "provider": "gemini" if GEMINI_API_KEY else None,
        "model": GEMINI_MODEL if GEMINI_API_KEY else None,
        "fallback_model": GEMINI_FALLBACK_MODEL if GEMINI_API_KEY else None,
        "has_token": bool(GEMINI_API_KEY),
    }


def _models() -> List[str]:
    models: List[str] = []
    for m in (GEMINI_MODEL, GEMINI_FALLBACK_MODEL):
        if m and m not in models:
            models.append(m)
    return models


def _extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    """Concatenate the text parts of the first candidate."""
    try:
        candidates = payload.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
    except AttributeError:
        return None
    texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    text = "".join(texts).strip()
    return text or None


def _call_gemini(model: str, prompt: str) -> Optional[str]:
    body = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": TEMPERATURE,
            "topK": 1,
            "topP": 0.8,
            "maxOutputTokens": LLM_MAX_TOKENS,
            "responseMimeType": "application/json",
        },
    }
    try:
        resp = requests.post(
            GEMINI_ENDPOINT_TEMPLATE.format(model=model),
            params={"key": GEMINI_API_KEY},
            json=body,
            timeout=LLM_TIMEOUT_SECS,
        )
    except Exception as e:
        log.warning("Gemini request error model=%s: %r", model, e)
        return None

    if resp.status_code != 200:
        try:
            msg = resp.text[:400]
        except Exception:
            msg = str(resp.status_code)
        log.warning("Gemini HTTP %s model=%s: %s", resp.status_code, model, msg)
        return None

    try:
        data = resp.json()
    except Exception:
        log.warning("Gemini model=%s: non-JSON body", model)
        return None

    text = _extract_gemini_text(data)
    if not text:
        log.warning("Gemini model=%s: empty response text", model)
    return text


def generate_text(prompt: str) -> Optional[str]:
    """Raw model output for ``prompt``, trying the fallback model when the primary fails.

    Returns None when no credentials are configured or every model failed.
    """
    if not GEMINI_API_KEY:
        log.warning("Gemini generation skipped: GEMINI_API_KEY not set")
        return None
    models = _models()
    for i, model in enumerate(models):
        if i:
            log.warning("Gemini model '%s' failed; retrying with fallback '%s'", models[0], model)
        text = _call_gemini(model, prompt)
        if text:
            log.info("Gemini generation ok model=%s chars=%d", model, len(text))
            return text
    return None
