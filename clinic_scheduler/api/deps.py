from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials
from typing import Optional

from ..core.context import RequestContext
from ..core.security import (
    security, verify_token, AuthenticationError, UserRole, TokenPayload
)

async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    
    # Verify token
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")
    
    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")
    
    return token_payload

async def get_request_context(
    token_payload: TokenPayload = Depends(get_current_user_token),
    x_request_id: Optional[str] = Header(None),
) -> RequestContext:
    """Build the explicit per-request context handed to every scheduling call."""
    try:
        actor_id = int(token_payload.sub)
        role = UserRole(token_payload.role)
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")
    
    if x_request_id:
        return RequestContext(actor_id=actor_id, role=role, request_id=x_request_id[:64])
    return RequestContext(actor_id=actor_id, role=role)
