from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from karuna.core.config import Settings, get_settings
from karuna.core.errors import Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


def create_token(payload: Dict[str, Any], minutes: int, settings: Optional[Settings] = None):
    settings = settings or get_settings()
    payload = dict(payload)
    payload["exp"] = datetime.utcnow() + timedelta(minutes=minutes)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)

def decode_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")

async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        data = decode_token(creds.credentials, settings)
    except Unauthorized as ex:
        raise HTTPException(status_code=401, detail=str(ex))
    if not data.get("sub"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return {"id": str(data["sub"]), "role": data.get("role")}

def require_role(*roles: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"Access denied. {' or '.join(roles)} role required.")
        return user
    return checker
