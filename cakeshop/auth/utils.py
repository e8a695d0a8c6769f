from datetime import datetime, timedelta, timezone
import secrets
from typing import Any, Dict, Optional
from jose import jwt, JWTError
from cakeshop.config.settings import config_settings

ACCESS_TOKEN_EXPIRE_MINUTES = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(user_public_id, role: str = "user", expires_dur=ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now=datetime.now(timezone.utc)
    expiry= now + (timedelta(minutes=expires_dur))

    payload = {
        "sub": str(user_public_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
        "role": role,
    }
    token=jwt.encode(claims=payload,key=config_settings.JWT_SECRET,algorithm=config_settings.JWT_ALGO)
    return token


def decode_token(token:str) -> Optional[Dict[str, Any]]:
    """To verify the signature , expiration and user claims of token"""
    try:
        token_data=jwt.decode(
        token,
        key=config_settings.JWT_SECRET,
        algorithms=[config_settings.JWT_ALGO]
        )
        return token_data
    except JWTError:
        return None
