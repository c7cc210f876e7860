"""
Simulated completion back end.

Used when no OPENAI_API_KEY is configured: returns a clearly labelled fake
enhancement so the app and the processing flow can be exercised offline.
Never used in production; startup logs a warning when it is selected.
"""

import logging
import time
from typing import Any, Dict, Optional

from speechcraft.exceptions import CompletionServiceError
from speechcraft.services.completion_base import CompletionResult, CompletionService

logger = logging.getLogger(__name__)


class SimulatedCompletionService(CompletionService):
    backend = "simulated"
    model = "simulated"

    def __init__(self, fail: bool = False):
        # fail=True makes every call raise, to exercise the fallback path locally
        self.fail = fail
        self.calls = 0

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
    ) -> CompletionResult:
        start = time.perf_counter()
        self.calls += 1
        if self.fail:
            raise CompletionServiceError(message="Simulated completion failure")

        logger.info("Simulated completion for prompt of %d chars", len(prompt))
        text = (
            "[SIMULATED - AI PROCESSED]\n\n"
            f"{prompt.strip()}\n\n"
            "**Key Points:**\n"
            "- This is a simulated AI enhancement\n"
            "- Original text preserved\n"
            "- Configure OPENAI_API_KEY for real processing"
        )
        return CompletionResult(
            text=text,
            # Rough estimate: ~4 characters per token
            tokens_used=max(1, len(prompt) // 4),
            model=self.model,
            elapsed=time.perf_counter() - start,
        )

    async def health_check(self) -> bool:
        return True

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.backend, "model": self.model}
