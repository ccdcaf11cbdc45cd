"""Dashboard backend REST client, governed by the request governor."""

from botdash.client.rest_client import DashboardRestClient
from botdash.client.types import ClientConfig, WalletBalance

__all__ = [
    "ClientConfig",
    "DashboardRestClient",
    "WalletBalance",
]
