"""Middleware for tenant and actor context."""
from functools import wraps
from flask import g, request
from estoque_pdv.exceptions import UnauthorizedError

TENANT_HEADER = 'X-Tenant-Id'
USER_HEADER = 'X-User-Id'


def load_actor_context():
    """
    Load the caller's tenant and user ids into g (Flask's per-request global).

    Authentication happens upstream (gateway / auth service); it forwards the
    resolved identity in the X-Tenant-Id and X-User-Id headers.
    """
    g.tenant_id = (request.headers.get(TENANT_HEADER) or '').strip() or None
    g.user_id = (request.headers.get(USER_HEADER) or '').strip() or None


def require_tenant(f):
    """
    Decorator: Require tenant and user context.

    Returns a 403 JSON error when either header is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('tenant_id') is None:
            raise UnauthorizedError(f'Cabeçalho {TENANT_HEADER} obrigatório.')
        if g.get('user_id') is None:
            raise UnauthorizedError(f'Cabeçalho {USER_HEADER} obrigatório.')
        return f(*args, **kwargs)
    return decorated_function
