from typing import Any, Dict

import jwt

from chatcore.config import get_settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a token issued by the auth service; raises jwt.PyJWTError when invalid."""
    settings = get_settings()
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if not payload.get("sub"):
        raise jwt.InvalidTokenError("Token has no subject")
    return payload
