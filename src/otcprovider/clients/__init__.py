"""HTTP clients for the cloud REST API."""

from otcprovider.clients.base import ServiceClient, is_retryable
from otcprovider.clients.factory import (
    SERVICE_CATALOG,
    ClientFactory,
    Credentials,
    resolve_endpoint,
)

__all__ = [
    "SERVICE_CATALOG",
    "ClientFactory",
    "Credentials",
    "ServiceClient",
    "is_retryable",
    "resolve_endpoint",
]
