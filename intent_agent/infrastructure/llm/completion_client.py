from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CompletionParams:
    """Per-call generation settings"""
    model: str
    max_tokens: int = 1000
    temperature: float = 0.1


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class CompletionResult:
    """Raw completion text plus token counters"""
    text: str
    usage: Usage = field(default_factory=Usage)
    model: Optional[str] = None
    stop_reason: Optional[str] = None


class CompletionError(Exception):
    """Transport failure or non-success response from the completion backend"""

    def __init__(self, message: str, error_type: str = "api_error", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code


class CompletionTimeoutError(CompletionError):
    """The completion backend did not answer in time"""

    def __init__(self, message: str = "completion request timed out"):
        super().__init__(message, error_type="timeout")


class CompletionClient(ABC):
    """Send prompt text, get completion text"""

    @abstractmethod
    async def complete(self, prompt: str, params: CompletionParams) -> CompletionResult:
        """Run one completion for a single user-role prompt.

        Raises CompletionTimeoutError on timeout and CompletionError on any
        other backend failure.
        """

    async def close(self) -> None:
        pass
