"""
GENESIS Copywriter Agents
===============================================================================
Caption enhancement and translation using Claude.

Features:
- Turns a shopkeeper's raw note into a short, speakable marketing caption
- Translates the caption while keeping prices, times and names intact
- Maps Anthropic SDK failures onto the uniform AdapterError contract

Environment: ANTHROPIC_API_KEY, ANTHROPIC_MODEL

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import logging
import os
from typing import Optional

import anthropic

from agents.base import AdapterError, TextEnhancer, Translator
from schemas.generation_schema import ErrorCode

logger = logging.getLogger("genesis.copywriter")

DEFAULT_MODEL = "claude-sonnet-4-20250514"


ENHANCE_PROMPT = """You write short promotional captions for small local businesses.

Business category: {category}
Owner's message (may be informal, misspelled or mixed-language):
\"\"\"{message}\"\"\"

Rewrite it as ONE catchy English marketing caption that:
- keeps every concrete fact (prices, opening hours, location, offers)
- is 25 to 45 words, so it reads aloud in 10 to 20 seconds
- has no hashtags, emojis or quotation marks

Return only the caption text."""


TRANSLATE_PROMPT = """Translate this marketing caption into {language}.
Keep numbers, times, prices and proper names unchanged. Keep it natural and
friendly for local customers. Use the native script of the language.

Caption:
\"\"\"{text}\"\"\"

Return only the translated caption."""


def _error_from_anthropic(exc: anthropic.AnthropicError) -> AdapterError:
    if isinstance(exc, anthropic.APITimeoutError):
        return AdapterError(ErrorCode.ADAPTER_TIMEOUT, f"Claude request timed out: {exc}", retryable=True)
    if isinstance(exc, anthropic.APIConnectionError):
        return AdapterError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Claude unreachable: {exc}", retryable=True)
    if isinstance(exc, anthropic.RateLimitError):
        return AdapterError(ErrorCode.RATE_LIMITED, f"Claude rate limited: {exc}", retryable=True, status_code=429)
    if isinstance(exc, anthropic.APIStatusError):
        status = exc.status_code
        retryable = status >= 500 or status == 529
        code = ErrorCode.UPSTREAM_UNAVAILABLE if retryable else ErrorCode.BAD_REQUEST
        return AdapterError(code, f"Claude returned {status}: {exc}", retryable=retryable, status_code=status)
    return AdapterError(ErrorCode.ADAPTER_ERROR, f"Claude request failed: {exc}", retryable=False)


class ClaudeCopywriterBase:
    """Shared Claude client handling for the copywriter agents"""

    def __init__(
        self,
        anthropic_client: Optional[anthropic.AsyncAnthropic] = None,
        model: Optional[str] = None,
        max_tokens: int = 400
    ):
        self.anthropic = anthropic_client
        if not self.anthropic:
            api_key = os.getenv("ANTHROPIC_API_KEY")
            if api_key:
                self.anthropic = anthropic.AsyncAnthropic(api_key=api_key)

        self.model = model or os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self.max_tokens = max_tokens

        if not self.anthropic:
            logger.warning(f"[{self.name}] No ANTHROPIC_API_KEY - calls will fail")

    async def _complete(self, prompt: str) -> str:
        if not self.anthropic:
            raise AdapterError(ErrorCode.BAD_REQUEST, "Anthropic client not configured", retryable=False)

        try:
            response = await self.anthropic.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}]
            )
        except anthropic.AnthropicError as e:
            raise _error_from_anthropic(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip().strip('"').strip()

        if not text:
            raise AdapterError(ErrorCode.EMPTY_OUTPUT, f"{self.name} returned no text", retryable=True)
        return text


class ClaudeTextEnhancer(ClaudeCopywriterBase, TextEnhancer):
    """Caption enhancement agent"""

    name = "claude_enhancer"

    async def enhance_text(self, raw_message: str, category: str) -> str:
        prompt = ENHANCE_PROMPT.format(category=category, message=raw_message)
        caption = await self._complete(prompt)
        logger.info(f"[{self.name}] Enhanced {len(raw_message)} chars -> {len(caption)} chars")
        return caption


class ClaudeTranslator(ClaudeCopywriterBase, Translator):
    """Caption translation agent"""

    name = "claude_translator"

    async def translate(self, text: str, target_language: str) -> str:
        prompt = TRANSLATE_PROMPT.format(language=target_language.title(), text=text)
        translated = await self._complete(prompt)
        logger.info(f"[{self.name}] Translated caption into {target_language}")
        return translated
