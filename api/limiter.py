"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules that
need a tighter per-route limit with @limiter.limit() / @auth_attempts.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

default_limits is the blanket per-IP budget (API_RATE_LIMIT) that
SlowAPIMiddleware applies to every undecorated route.

auth_attempts is one budget (AUTH_RATE_LIMIT) shared by every credential
endpoint under the "auth" scope, so login attempts and reset attempts from the
same address draw from the same pool. The moving-window strategy rejects the
(N+1)-th attempt inside the window; rejected attempts are not counted, so a
new attempt succeeds once the window has passed the earliest counted one.

Decorator order matters: @router.post(...) goes ABOVE @auth_attempts so
FastAPI registers the wrapped endpoint. FastAPI resolves the wrapped
function's annotations against slowapi's module globals, so modules using
@auth_attempts must not use "from __future__ import annotations".
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_settings().api_rate_limit],
    storage_uri="memory://",
    strategy="moving-window",
)

# Callable limit: read per request so AUTH_RATE_LIMIT changes apply without
# re-importing the route modules.
auth_attempts = limiter.shared_limit(
    lambda: get_settings().auth_rate_limit,
    scope="auth",
    error_message="Too many authentication attempts. Please try again later.",
)
