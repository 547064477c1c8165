"""Upstream chat call against the Gemini generateContent API."""

import logging
from typing import Dict, List, Optional, cast

import httpx

from shop_assistant.errors import UpstreamError
from shop_assistant.models import key_prefix

logger = logging.getLogger(__name__)

GENERATION_CONFIG = {
    "temperature": 0.5,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 512,
}

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_NONE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


def _error_message(response: httpx.Response) -> str:
    """Extract ``error.message`` from a Gemini error body, if there is one."""
    try:
        data = cast(Dict[str, object], response.json())
    except ValueError:
        return f"HTTP {response.status_code}"
    error_obj = data.get("error") if isinstance(data, dict) else None
    if isinstance(error_obj, dict) and error_obj.get("message"):
        return str(error_obj["message"])
    return f"HTTP {response.status_code}"


def _reply_text(data: Dict[str, object]) -> Optional[str]:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    if not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    texts = [part.get("text", "") for part in parts if isinstance(part, dict)]
    text = "".join(texts)
    return text or None


class GeminiClient:
    def __init__(self, http_client: httpx.AsyncClient, model: str):
        self.http_client = http_client
        self.model = model

    async def generate(
        self,
        api_key: str,
        system_prompt: str,
        conversation: List[Dict[str, str]],
    ) -> str:
        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [
                {"role": turn["role"], "parts": [{"text": turn["text"]}]}
                for turn in conversation
            ],
            "generationConfig": GENERATION_CONFIG,
            "safetySettings": SAFETY_SETTINGS,
        }

        try:
            response = await self.http_client.post(
                f"/v1beta/models/{self.model}:generateContent",
                json=body,
                headers={"x-goog-api-key": api_key},
            )
        except httpx.TimeoutException:
            logger.error("Timeout calling Gemini (key=%s)", key_prefix(api_key))
            raise UpstreamError("AI Error: request to the AI provider timed out")
        except httpx.RequestError as exc:
            logger.error("Request error calling Gemini: %s", exc)
            raise UpstreamError(f"AI Error: {exc}")

        if response.status_code != 200:
            message = _error_message(response)
            logger.error(
                "Gemini returned %s (key=%s): %s",
                response.status_code,
                key_prefix(api_key),
                message,
            )
            raise UpstreamError(f"AI Error: {message}")

        try:
            text = _reply_text(cast(Dict[str, object], response.json()))
        except ValueError:
            text = None
        if text is None:
            raise UpstreamError("AI Error: empty response from the AI provider")
        return text
