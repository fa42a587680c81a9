"""
Pytest configuration and shared fixtures for the yield engine test suite.

Test Structure:
- tests/unit/ - Fast tests with mocked or in-memory dependencies

Settings are read once at import, so the test environment is selected here
before any yield_engine module is imported.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MARKET_DATA_PROVIDER", "static")
os.environ.setdefault("DB_URL", "sqlite://")

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from yield_engine.agents.state import Opportunity, RiskLevel


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires external services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


class FakeClock:
    """Settable clock for grant expiry and position accrual."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_scheduler():
    """Scheduler stand-in that records add_job/remove_job calls."""
    scheduler = MagicMock()
    scheduler.running = False
    scheduler.get_jobs.return_value = []
    return scheduler


@pytest.fixture
def diversified_opportunities() -> list[Opportunity]:
    """Three low-yield pools across three protocols (overall risk low)."""
    return [
        Opportunity(protocol="venus", pool="USDT", apy=8.0, risk=RiskLevel.LOW, liquidity=5_000_000, contract="0xVenusUSDT"),
        Opportunity(protocol="aave", pool="USDC", apy=6.0, risk=RiskLevel.LOW, liquidity=9_000_000, contract="0xAaveUSDC"),
        Opportunity(protocol="pancake", pool="CAKE-BNB", apy=7.0, risk=RiskLevel.LOW, liquidity=2_000_000, contract="0xPancakeCAKE"),
    ]
