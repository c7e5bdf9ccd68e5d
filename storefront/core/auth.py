from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from storefront.core.config import settings

security = HTTPBearer(auto_error=False)

def _decode(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload

def get_current_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _decode(creds.credentials)  # contains sub (user id), role

def get_optional_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> Optional[dict]:
    # anonymous callers are allowed, but a bad token is still rejected
    if not creds:
        return None
    return _decode(creds.credentials)

def is_admin(identity: Optional[dict]) -> bool:
    return bool(identity) and identity.get("role") == "admin"

def require_admin(identity: dict = Depends(get_current_identity)) -> dict:
    if not is_admin(identity):
        raise HTTPException(status_code=403, detail="Admin only")
    return identity
