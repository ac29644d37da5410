import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional
from jose import JWTError, jwt
from storefront.auth.models import Principal
from storefront.config.settings import config_settings

# tokens are minted by the identity service, this helper exists for local tooling and tests
def create_access_token(user_id, user_roles: Iterable[str] = (), expires_minutes: int = 30,
                        secret: Optional[str] = None, algorithm: Optional[str] = None) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_minutes)

    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
        "roles": list(user_roles),
    }
    return jwt.encode(claims=payload, key=secret or config_settings.JWT_SECRET,
                      algorithm=algorithm or config_settings.JWT_ALGO)


def decode_token(token: str, secret: Optional[str] = None,
                 algorithm: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """To verify the signature , expiration and claims of token"""
    try:
        return jwt.decode(token, key=secret or config_settings.JWT_SECRET,
                          algorithms=[algorithm or config_settings.JWT_ALGO])
    except JWTError:
        return None


def principal_from_claims(claims: Dict[str, Any], admin_role: str = "admin") -> Optional[Principal]:
    sub = claims.get("sub")
    if not sub:
        return None
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    roles = tuple(str(r) for r in roles)
    return Principal(user_id=str(sub), roles=roles, is_admin=admin_role in roles)
