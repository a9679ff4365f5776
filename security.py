import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from policy import ROLES, Action, authorize

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def _token_from_request(request: Request) -> Optional[str]:
    token = request.headers.get(config.TOKEN_HEADER)
    if token:
        return token.strip()
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return None


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Decode the caller's token into ``{"id", "role"}``.

    Only the signature and expiry are checked; the store is not consulted, so
    unauthenticated requests are rejected before any database access.
    """
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Token is not valid")
    user_id, role = payload.get("sub"), payload.get("role")
    if not user_id or role not in ROLES:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return {"id": user_id, "role": role}


async def get_optional_user(request: Request) -> Optional[Dict[str, Any]]:
    """Like get_current_user, but None when no token was sent at all."""
    if not _token_from_request(request):
        return None
    return await get_current_user(request)


def ensure_allowed(user: Dict[str, Any], action: Action, student: Optional[Dict[str, Any]] = None) -> None:
    if not authorize(user["role"], user["id"], action, student):
        logger.warning("Denied %s for %s %s", action.value, user["role"], user["id"])
        raise HTTPException(status_code=403, detail="Not authorized")


def require_permission(action: Action):
    """Dependency for role-only rules, checked before the endpoint touches the store."""
    async def _dep(user: Dict[str, Any] = Depends(get_current_user)):
        ensure_allowed(user, action)
        return user
    return _dep
