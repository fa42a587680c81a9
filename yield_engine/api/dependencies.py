"""Shared dependencies for API endpoints.

The AgentManager is built once per application (see api.main) and stored on
`app.state`. Routers reach it and its collaborators through these helpers,
which tests replace via `app.dependency_overrides` or by passing a manager
to `create_app`.
"""

from fastapi import Depends, Request

from yield_engine.agents.manager import AgentManager
from yield_engine.services.authorization import AuthorizationStore


def get_manager(request: Request) -> AgentManager:
    return request.app.state.manager


def get_authorization(manager: AgentManager = Depends(get_manager)) -> AuthorizationStore:
    return manager.authorization
