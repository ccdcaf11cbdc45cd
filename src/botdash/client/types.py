"""Types and configuration for the dashboard REST client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ClientConfig:
    """
    Configuration for the dashboard REST client.

    Attributes:
        base_url: Backend base URL (paths are appended verbatim).
        request_timeout_ms: Total timeout for a single HTTP attempt.
        default_headers: Headers sent with every request.
    """

    base_url: str = "http://localhost:5000/api"
    request_timeout_ms: int = 15000
    default_headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )

    def __post_init__(self) -> None:
        if self.request_timeout_ms <= 0:
            raise ValueError(f"request_timeout_ms must be > 0, got {self.request_timeout_ms}")
        self.base_url = self.base_url.rstrip("/")


@dataclass(frozen=True)
class WalletBalance:
    """Balance of one bot wallet."""

    address: str
    balance: float

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> WalletBalance:
        """Parse one entry of the /wallets/balances response."""
        try:
            balance = float(str(raw.get("balance", "0")))
        except (ValueError, TypeError):
            balance = 0.0
        return cls(address=str(raw["address"]), balance=balance)
