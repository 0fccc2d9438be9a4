"""
Department assistant backed by OpenAI chat completions.

The state machine hands over the session's role-tagged turns ("user" /
"model") and the department's system instruction; the service trims them to
a turn and token budget and returns the reply text. Provider failures never
escape: sustained ones open a circuit breaker, and the caller always gets
either a reply or the catalog apology.
"""

import asyncio
import os
from typing import Dict, List, Optional

import tiktoken
from openai import OpenAI
from pybreaker import CircuitBreaker

from zapdesk.services.catalog_service import TextCatalog
from zapdesk.utils.logger import logger
from zapdesk.utils.retry import retry_on_api_error


# Per-message framing overhead of the chat format
MESSAGE_OVERHEAD_TOKENS = 4

ROLE_MAP = {"user": "user", "model": "assistant"}


class LLMService:
    def __init__(
        self,
        catalog: TextCatalog,
        model: Optional[str] = None,
        max_context_messages: int = 10,
        max_tokens_per_request: int = 4000,
        max_response_tokens: int = 500,
    ):
        """
        Raises:
            ValueError: If OPENAI_API_KEY is not set
        """
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required")

        self.catalog = catalog
        self.model = model or os.getenv("LLM_MODEL", "gpt-4o-mini")
        self.max_context_messages = max_context_messages
        self.max_tokens_per_request = max_tokens_per_request
        self.max_response_tokens = max_response_tokens
        self.client = OpenAI(api_key=api_key)
        self.tokenizer = self._load_tokenizer()
        self.circuit_breaker = CircuitBreaker(fail_max=5, reset_timeout=60, name="openai-chat")

        logger.info(
            f"Assistant model {self.model}: {max_context_messages} turns, "
            f"{max_tokens_per_request} context tokens"
        )

    def _load_tokenizer(self):
        try:
            return tiktoken.encoding_for_model(self.model)
        except KeyError:
            logger.warning(f"No tiktoken encoding for {self.model}, counting with cl100k_base")
            return tiktoken.get_encoding("cl100k_base")

    def estimate_tokens(self, text: str) -> int:
        try:
            return len(self.tokenizer.encode(text))
        except Exception as e:
            logger.error(f"Token count failed, estimating from length: {e}")
            return len(text) // 4

    def build_messages(self, turns: List[Dict[str, str]], system_instruction: str) -> List[Dict[str, str]]:
        """
        Chat payload: the system instruction, then the newest turns that fit.

        Turns are taken newest first until either the turn limit or the token
        budget would be exceeded, and are emitted oldest first.
        """
        budget = self.max_tokens_per_request - self.estimate_tokens(system_instruction)
        window: List[Dict[str, str]] = []

        for turn in reversed(turns):
            if len(window) == self.max_context_messages:
                break
            content = turn.get("text") or ""
            cost = self.estimate_tokens(content) + MESSAGE_OVERHEAD_TOKENS
            if cost > budget:
                break
            budget -= cost
            window.append({"role": ROLE_MAP.get(turn.get("role"), "user"), "content": content})

        if len(window) < len(turns):
            logger.debug(f"Assistant context trimmed to {len(window)} of {len(turns)} turns")

        window.reverse()
        return [{"role": "system", "content": system_instruction}] + window

    @retry_on_api_error(max_attempts=3, min_wait=1, max_wait=10)
    def _call_openai_api(self, messages: List[Dict[str, str]]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_completion_tokens=self.max_response_tokens,
        )
        return response.choices[0].message.content or ""

    async def generate_reply(self, turns: List[Dict[str, str]], system_instruction: str) -> str:
        """Reply to the latest turn off the event loop; the apology text on any failure."""
        messages = self.build_messages(turns, system_instruction)
        try:
            reply = await asyncio.to_thread(self.circuit_breaker.call, self._call_openai_api, messages)
        except Exception as e:
            logger.error(f"Assistant reply failed: {e}")
            return self.catalog.text("error")
        logger.info(f"Assistant replied ({len(reply)} chars)")
        return reply
