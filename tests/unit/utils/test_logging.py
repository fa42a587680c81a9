"""
Tests for logging context helpers and the request middleware's path binding.
"""

import structlog

from yield_engine.api.middleware import path_context
from yield_engine.utils.logging import agent_context


class TestAgentContext:

    def test_binds_and_unbinds(self):
        structlog.contextvars.clear_contextvars()

        with agent_context("yield-hunter-1", "0xabc"):
            assert structlog.contextvars.get_contextvars() == {
                "agent_id": "yield-hunter-1",
                "principal": "0xabc",
            }

        assert structlog.contextvars.get_contextvars() == {}

    def test_principal_optional(self):
        structlog.contextvars.clear_contextvars()

        with agent_context("risk-monitor-1"):
            assert structlog.contextvars.get_contextvars() == {"agent_id": "risk-monitor-1"}


class TestPathContext:

    def test_agent_path(self):
        assert path_context("/api/agents/yield-hunter-1/cycle") == {"agent_id": "yield-hunter-1"}

    def test_collection_actions_bind_nothing(self):
        assert path_context("/api/agents/start") == {}
        assert path_context("/api/agents/dispatch") == {}

    def test_grant_principal_lowercased(self):
        assert path_context("/api/grants/0xABC/history") == {"principal": "0xabc"}

    def test_other_paths(self):
        assert path_context("/health") == {}
