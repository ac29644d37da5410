from fastapi import Request
from storefront.auth.models import Principal
from storefront.common.custom_exceptions import Forbidden, Unauthorized


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthorized("Authentication required")
    return principal


def require_admin(request: Request) -> Principal:
    principal = get_principal(request)
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal
