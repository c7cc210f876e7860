"""
SpeechCraft Processing Server — Abstract Completion Service Interface
======================================================================

What:  Abstract base class for text-completion providers.
Why:   The processor must not care whether it talks to OpenAI or to the
       simulated back end used for local runs and tests (Strategy pattern).
How:   Concrete implementations inherit from CompletionService and implement
       complete() and health_check().

Implementations:
    - OpenAICompletionService: OpenAI chat completions (live)
    - SimulatedCompletionService: deterministic fake output (no credentials)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CompletionResult:
    """Generated text plus the usage metadata the processor persists."""

    text: str
    tokens_used: int
    model: str
    elapsed: float  # seconds


class CompletionService(ABC):
    """
    Contract:
        - complete() makes exactly ONE provider call; no retries
        - every provider failure surfaces as CompletionServiceError
        - health_check() never raises
    """

    backend: str = "unknown"
    model: Optional[str] = None

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
    ) -> CompletionResult:
        """
        Generate text for a prompt.

        Raises:
            CompletionServiceError: provider error, timeout, or empty answer.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check (does NOT consume tokens)."""
        ...

    def describe(self) -> Dict[str, Any]:
        """Static details for /api/stats and /health."""
        return {"backend": self.backend, "model": self.model}

    async def close(self) -> None:
        """Release network resources on shutdown."""
        return None
