"""
Per-invocation client factory.

Clients are memoized by (service, version, region) for the lifetime of
one operation context; a handler touching two versions of the same
service therefore authenticates each endpoint once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from otcprovider.clients.base import ServiceClient
from otcprovider.config.settings import Settings
from otcprovider.core.errors import ConfigurationError
from otcprovider.engine.waiter import Cancellation

logger = structlog.get_logger()

SERVICE_CATALOG: dict[tuple[str, str], str] = {
    ("identity", "v3"): "https://iam.{region}.{cloud}/v3",
    ("identity", "v3.0"): "https://iam.{region}.{cloud}/v3.0",
    ("cbr", "v3"): "https://cbr.{region}.{cloud}/v3/{project_id}",
    ("dcaas", "v2.0"): "https://dcaas.{region}.{cloud}/v2.0",
    ("rts", "v1"): "https://rts.{region}.{cloud}/v1/{project_id}",
    ("waf", "v1"): "https://waf.{region}.{cloud}/v1/{project_id}",
}


@dataclass(frozen=True)
class Credentials:
    """Already-authenticated material handed over by the host."""

    token: str | None = None
    project_id: str | None = None
    domain_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Credentials":
        return cls(token=settings.token, project_id=settings.project_id, domain_id=settings.domain_id)

    def __repr__(self) -> str:
        token = "***" if self.token else None
        return f"Credentials(token={token!r}, project_id={self.project_id!r}, domain_id={self.domain_id!r})"


def resolve_endpoint(
    settings: Settings,
    credentials: Credentials,
    service: str,
    version: str,
    region: str,
) -> str:
    overrides = settings.endpoint_overrides
    template = overrides.get(f"{service}/{version}") or overrides.get(service)
    if template is None:
        template = SERVICE_CATALOG.get((service, version))
    if template is None:
        raise ConfigurationError(
            f"Unknown service endpoint: {service} {version}",
            details={"known": ", ".join(f"{s} {v}" for s, v in sorted(SERVICE_CATALOG))},
        )
    if "{project_id}" in template and not credentials.project_id:
        raise ConfigurationError(
            f"Service {service} {version} requires a project_id", details={"region": region}
        )
    return template.format(
        region=region,
        cloud=settings.cloud,
        project_id=credentials.project_id or "",
        domain_id=credentials.domain_id or "",
    )


class ClientFactory:
    def __init__(
        self,
        settings: Settings,
        credentials: Credentials,
        *,
        region: str | None = None,
        cancel: Cancellation | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.region = region or settings.region
        self._cancel = cancel
        self._sleep = sleep
        self._clients: dict[tuple[str, str, str], ServiceClient] = {}

    def client(self, service: str, version: str, region: str | None = None) -> ServiceClient:
        key = (service, version, region or self.region)
        cached = self._clients.get(key)
        if cached is not None:
            return cached
        client = self._build(*key)
        self._clients[key] = client
        return client

    def _build(self, service: str, version: str, region: str) -> ServiceClient:
        base_url = resolve_endpoint(self.settings, self.credentials, service, version, region)
        logger.debug("service_client_built", service=service, version=version, region=region, base_url=base_url)
        return ServiceClient(
            base_url,
            self.credentials.token,
            service=f"{service}/{version}",
            timeout=self.settings.http_timeout,
            max_retries=self.settings.max_retries,
            backoff=self.settings.retry_backoff,
            backoff_max=self.settings.retry_backoff_max,
            cancel=self._cancel,
            sleep=self._sleep,
        )

    def __len__(self) -> int:
        return len(self._clients)

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()
