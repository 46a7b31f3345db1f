from fastapi import Depends, HTTPException, Request
from app.auth_local import CurrentUser, decode_access_token, user_from_claims
from app.context import CheckoutContext
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "

def get_context(request: Request) -> CheckoutContext:
    return request.app.state.context

def get_current_user(request: Request) -> CurrentUser:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    claims = decode_access_token(auth_header[len(BEARER_PREFIX):].strip())
    user = user_from_claims(claims) if claims else None
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    set_request_context(user_id=user.id)
    return user

def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
