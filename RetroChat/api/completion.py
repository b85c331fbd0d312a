"""
Bot completion client.
Asks the Gemini generateContent endpoint for a short chat reply.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import aiohttp

from RetroChat.config import config
from RetroChat.core.logging import get_logger
from .client import SessionManager

logger = get_logger(__name__)

MAX_HISTORY_LINES = 10

SYSTEM_INSTRUCTION = (
    "You are a friendly, cute, and helpful AI assistant named Gemini AI inside a retro "
    "MIRC-style chatroom. Keep your responses concise (under 300 characters if possible) "
    "to fit the chat flow. Use emojis occasionally. If the user asks for help, suggest "
    "using chat commands like /nick or /me."
)

MISSING_KEY_REPLY = (
    "⚠️ Configuration Error: My API key is missing! "
    "Set RETROCHAT_BOT_API_KEY (or API_KEY) in the environment."
)
EMPTY_REPLY = "I'm not sure what to say... 🤖"


def build_prompt(prompt: str, history: Sequence[str]) -> str:
    """Combine recent chat lines and the prompt into one user turn."""
    recent = list(history)[-MAX_HISTORY_LINES:]
    return "Previous Chat:\n" + "\n".join(recent) + f"\n\nUser: {prompt}"


def extract_text(payload: Dict[str, Any]) -> str:
    for candidate in payload.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if text.strip():
            return text.strip()
    return ""


class GeminiCompletionClient:
    """
    Completion service that never raises.

    Any failure becomes a short ``⚠️`` reply so the chat keeps flowing.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, endpoint: Optional[str] = None):
        self.api_key = config.BOT_API_KEY if api_key is None else api_key
        self.model = model or config.BOT_MODEL
        self.endpoint = (endpoint or config.BOT_ENDPOINT).rstrip("/")

    async def complete(self, prompt: str, history: Sequence[str]) -> str:
        if not self.api_key or not self.api_key.strip():
            logger.warning("Bot API key is missing")
            return MISSING_KEY_REPLY

        body = {
            "system_instruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{"role": "user", "parts": [{"text": build_prompt(prompt, history)}]}],
        }
        url = f"{self.endpoint}/{self.model}:generateContent"
        try:
            session = await SessionManager().get_session()
            async with session.post(url, json=body, headers={"x-goog-api-key": self.api_key}) as response:
                payload = await response.json(content_type=None)
                if response.status >= 400:
                    error = (payload or {}).get("error", {}) if isinstance(payload, dict) else {}
                    message = error.get("message") or f"HTTP {response.status}"
                    logger.error("Bot API error: %s", message)
                    return f"⚠️ Bot Error: {message}"
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("Bot API error: %s", e)
            return f"⚠️ Bot Error: {str(e) or 'Unknown error occurred.'}"

        return extract_text(payload if isinstance(payload, dict) else {}) or EMPTY_REPLY


__all__ = ['GeminiCompletionClient', 'build_prompt', 'extract_text']
