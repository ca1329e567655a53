from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token
from models import AppRole

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload or not payload.get("sub"):
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_account(request: Request) -> str:
    """Authenticated broker; returns the account (corretor) id from the token subject."""
    user = await require_auth(request)
    return user["sub"]

async def require_admin(request: Request) -> str:
    """Require the admin role tag. Roles are read from the role store, never from the token."""
    account_id = await require_account(request)
    roles = await request.app.state.role_store.get_roles(account_id)
    if AppRole.ADMIN.value not in roles:
        logger.warning("Admin route denied for %s on %s", account_id, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return account_id

def get_config_resolver(request: Request):
    return request.app.state.config_resolver

def get_entitlement_resolver(request: Request):
    return request.app.state.entitlement_resolver
