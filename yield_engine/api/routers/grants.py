"""
Grant API endpoints.

Create, inspect and revoke a principal's session grant, and dry-run an
authorization check against it.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from yield_engine.api.dependencies import get_authorization
from yield_engine.api.schemas import AuthorizeRequest, AuthorizeResponse, GrantResponse, RevokeResponse
from yield_engine.services.authorization import AuthorizationStore, GrantPermissions

router = APIRouter(prefix="/api/grants", tags=["Grants"])


@router.get("/{principal}", response_model=GrantResponse)
async def get_active_grant(
    principal: str,
    store: AuthorizationStore = Depends(get_authorization),
) -> GrantResponse:
    grant = store.active_grant(principal)
    if grant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active grant")
    return GrantResponse.from_grant(grant)


@router.post("/{principal}", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    principal: str,
    permissions: GrantPermissions,
    store: AuthorizationStore = Depends(get_authorization),
) -> GrantResponse:
    """Create a grant, revoking any grant the principal already holds."""
    return GrantResponse.from_grant(store.grant(principal, permissions))


@router.delete("/{principal}", response_model=RevokeResponse)
async def revoke_grant(
    principal: str,
    store: AuthorizationStore = Depends(get_authorization),
) -> RevokeResponse:
    return RevokeResponse(revoked=store.revoke(principal))


@router.post("/{principal}/authorize", response_model=AuthorizeResponse)
async def check_authorization(
    principal: str,
    request: AuthorizeRequest,
    store: AuthorizationStore = Depends(get_authorization),
) -> AuthorizeResponse:
    decision = store.authorize(principal, request.amount, request.target_contract)
    return AuthorizeResponse(
        authorized=decision.authorized,
        reason=decision.reason.value if decision.reason else None,
        detail=decision.detail,
    )


@router.get("/{principal}/history", response_model=list[GrantResponse])
async def grant_history(
    principal: str,
    store: AuthorizationStore = Depends(get_authorization),
) -> list[GrantResponse]:
    """Every grant record for the principal, newest first, including revoked ones."""
    return [GrantResponse.from_grant(g) for g in store.history(principal)]
