import logging
from dataclasses import dataclass
from functools import wraps

import jwt
from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)

VENDOR = "vendor"
SUPPLIER = "supplier"
ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def _from_bearer(request):
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    secret = getattr(settings, "JWT_SECRET", "")
    if not secret:
        logger.error("JWT_SECRET missing in settings; rejecting bearer token")
        return None
    try:
        claims = jwt.decode(auth.split(" ", 1)[1], secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    user_id = claims.get("userId") or claims.get("sub")
    role = claims.get("role")
    if not user_id or role not in (VENDOR, SUPPLIER, ADMIN):
        return None
    return Principal(user_id=str(user_id), role=role)


def _from_session(request):
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        return None
    if user.is_staff:
        role = ADMIN
    elif user.groups.filter(name=SUPPLIER).exists():
        role = SUPPLIER
    else:
        role = VENDOR
    return Principal(user_id=str(user.pk), role=role)


def get_principal(request):
    """Resolve the already-authenticated caller, or ``None``.

    Tokens are issued by the identity service; they are only decoded here.
    """
    return _from_bearer(request) or _from_session(request)


def principal_required(*roles):
    """Attach ``request.principal``; 401 if anonymous, 403 if the role doesn't match."""
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            principal = get_principal(request)
            if principal is None:
                return JsonResponse({"ok": False, "error": "Authentication required"}, status=401)
            if roles and principal.role not in roles and not principal.is_admin:
                return JsonResponse({"ok": False, "error": "Not allowed"}, status=403)
            request.principal = principal
            return view(request, *args, **kwargs)
        return wrapper
    return decorator
