"""OpenAI Chat Completions client used by every pipeline stage."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from visibility_report.core.exceptions import CompletionError
from visibility_report.core.metrics import COMPLETION_TOKENS

logger = logging.getLogger(__name__)

API_URL = "https://api.openai.com/v1/chat/completions"

# Reasoning models reject temperature and need max_completion_tokens
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def _is_reasoning_model(model: str) -> bool:
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


@dataclass
class Completion:
    """Generated text plus the total tokens billed for the call."""

    text: str
    tokens: int = 0


class CompletionClient(ABC):
    """Anything that turns a (system prompt, user prompt) pair into text."""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        """Single attempt; callers wrap it in ``with_retry``."""
        ...


class OpenAiCompletionClient(CompletionClient):
    """Chat Completions over httpx. One request per call, no internal retries."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        timeout: float = 120.0,
        max_tokens: int = 2048,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if _is_reasoning_model(self.model):
            payload["max_completion_tokens"] = self.max_tokens
        else:
            payload["temperature"] = self.temperature
            payload["max_tokens"] = self.max_tokens

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(API_URL, json=payload, headers=headers)
            if resp.status_code >= 400:
                try:
                    error_msg = resp.json().get("error", {}).get("message", resp.text[:500])
                except ValueError:
                    error_msg = resp.text[:500]
                logger.error("OpenAI API %d for model=%s: %s", resp.status_code, self.model, error_msg)
            resp.raise_for_status()
            data = resp.json()

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise CompletionError(f"Malformed completion response: {e}") from e
        if not text.strip():
            raise CompletionError("Empty completion text")

        tokens = int((data.get("usage") or {}).get("total_tokens", 0))
        COMPLETION_TOKENS.inc(tokens)
        return Completion(text=text, tokens=tokens)
