"""
SpeechCraft Processing Server — OpenAI Completion Service
==========================================================

What:  Live CompletionService backed by the OpenAI chat-completions API.
Why:   Turns a raw speech transcript into a formatted note.
How:   Exactly one chat-completion request per processing attempt; timings
       and token usage are logged per call.
Who:   Created by the app factory when OPENAI_API_KEY is configured.

Resilience Strategy:
    1. NO retries: the processor absorbs a failed call into fallback text, so
       retrying would only delay the user's note. The SDK's own retry loop is
       switched off (max_retries=0).
    2. Request timeout from settings (openai_timeout) bounds each call.
    3. Every failure of the call or of reading its response surfaces as
       CompletionServiceError, so the user always gets a note back.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from speechcraft.config import Settings
from speechcraft.exceptions import CompletionServiceError
from speechcraft.services.completion_base import CompletionResult, CompletionService

logger = logging.getLogger(__name__)


class OpenAICompletionService(CompletionService):
    """
    OpenAI chat-completions implementation.

    Error Handling Chain:
        API call or response parsing fails → CompletionServiceError
        → processor writes fallback text (no retry)
    """

    backend = "openai"

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.openai_model
        self.max_tokens = settings.openai_max_tokens
        self.temperature = settings.openai_temperature

        # max_retries=0: one provider call per processing attempt
        self.client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout,
            max_retries=0,
        )

        logger.info(
            "OpenAICompletionService initialized with model=%s, max_tokens=%d, timeout=%ss",
            self.model,
            self.max_tokens,
            settings.openai_timeout,
        )

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
    ) -> CompletionResult:
        """
        Send one chat-completion request.

        Raises:
            CompletionServiceError: the API call failed, or its answer could
                not be read or held no text
        """
        request_id = str(uuid.uuid4())[:8]

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        logger.info(
            "[%s] Starting OpenAI completion (model=%s, prompt=%d chars)",
            request_id,
            self.model,
            len(prompt),
        )

        start_time = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                top_p=1,
                frequency_penalty=0,
                presence_penalty=0,
            )
            content = response.choices[0].message.content if response.choices else None
            if not content or not content.strip():
                raise CompletionServiceError(
                    message="The AI service returned an empty response",
                    context={"request_id": request_id},
                )
            text = content.strip()
            tokens_used = response.usage.total_tokens if response.usage else 0
            model = response.model or self.model
        except CompletionServiceError:
            raise
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.warning(
                "[%s] OpenAI call failed after %.0fms: %s: %s",
                request_id,
                elapsed * 1000,
                type(e).__name__,
                str(e),
            )
            raise CompletionServiceError(
                message="AI text enhancement failed",
                context={"request_id": request_id, "error_type": type(e).__name__},
            ) from e

        elapsed = time.perf_counter() - start_time
        logger.info(
            "[%s] OpenAI completion finished in %.0fms: %d tokens, %d chars",
            request_id,
            elapsed * 1000,
            tokens_used,
            len(text),
        )

        return CompletionResult(
            text=text,
            tokens_used=tokens_used,
            model=model,
            elapsed=elapsed,
        )

    async def health_check(self) -> bool:
        """
        Verify API key validity and connectivity.

        Lists models: free, and enough to prove auth + reachability.
        """
        try:
            await self.client.models.list()
            return True
        except Exception as e:
            logger.warning("OpenAI health check failed: %s", str(e))
            return False

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "model": self.model,
            "max_tokens": self.max_tokens,
        }

    async def close(self) -> None:
        await self.client.close()
