from typing import Iterable
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from storefront.auth.utils import decode_token, principal_from_claims
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, json_error

logger = get_logger("storefront.middlewares")


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Verifies the bearer JWT minted by the identity service and puts a Principal
    on request.state. Paths in `public_paths` (health, gateway webhook) skip it.
    """

    def __init__(self, app, *, public_paths: Iterable[str], jwt_secret: str, jwt_algo: str,
                 admin_role: str = "admin"):
        super().__init__(app)
        self.public_paths = tuple(public_paths)
        self.jwt_secret = jwt_secret
        self.jwt_algo = jwt_algo
        self.admin_role = admin_role

    def _reject(self, request: Request, reason: str):
        logger.warning("auth.middleware.failed", extra={
            "reason": reason,
            "path": request.url.path,
            "method": request.method,
        })
        payload = build_error(code="INVALID_AUTH", details={"message": "Missing or Invalid Auth Headers"})
        return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED,
                          headers={"WWW-Authenticate": "Bearer"})

    async def dispatch(self, request: Request, call_next):

        if any(request.url.path.startswith(p) for p in self.public_paths):
            return await call_next(request)

        scheme, _, token = (request.headers.get("Authorization") or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return self._reject(request, "missing bearer token")

        claims = decode_token(token.strip(), secret=self.jwt_secret, algorithm=self.jwt_algo)
        if not claims:
            return self._reject(request, "invalid or expired token")

        principal = principal_from_claims(claims, admin_role=self.admin_role)
        if principal is None:
            return self._reject(request, "token without subject")

        request.state.principal = principal
        logger.debug("auth.middleware.success", extra={"user_id": principal.user_id, "path": request.url.path})

        return await call_next(request)
