"""
errors.py
---------

Exception types shared by the domain, storage and integration layers.
The Flask app maps each of them to an HTTP status code.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


class RiskJournalError(Exception):
    """Base class for every error raised by this package."""


class TradeValidationError(RiskJournalError):
    """Raised when trade inputs break one or more invariants."""

    def __init__(self, messages: Iterable[str]) -> None:
        if isinstance(messages, str):
            messages = [messages]
        self.messages: List[str] = list(messages)
        super().__init__("; ".join(self.messages))


class TradeNotFoundError(RiskJournalError):
    """Raised when a trade (or a contract inside it) does not exist."""


@dataclass
class QuoteError(RiskJournalError):
    status_code: int
    code: Optional[str]
    message: str
    payload: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        code_str = f" [{self.code}]" if self.code else ""
        return f"QuoteError{code_str}: {self.message} (HTTP {self.status_code})"


@dataclass
class BrokerError(RiskJournalError):
    status_code: int
    code: Optional[str]
    message: str
    payload: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        code_str = f" [{self.code}]" if self.code else ""
        return f"BrokerError{code_str}: {self.message} (HTTP {self.status_code})"
