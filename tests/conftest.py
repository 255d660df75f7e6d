"""Root test configuration."""

import logging

import pytest
import structlog
from otcprovider.clients.factory import Credentials
from otcprovider.config.settings import Settings
from otcprovider.engine.lifecycle import ResourceEngine
from otcprovider.resources import default_registry


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        region="eu-de",
        cloud="otc.t-systems.com",
        token="test-token",
        project_id="proj",
        domain_id="dom",
        max_retries=3,
        retry_backoff=1.0,
        retry_backoff_max=4.0,
    )


@pytest.fixture
def credentials(settings):
    return Credentials.from_settings(settings)


@pytest.fixture
def provider(settings, credentials, clock):
    """Engine over the built-in resource types with a fake clock."""
    return ResourceEngine(default_registry(), settings, credentials, clock=clock, sleep=clock.sleep)
