"""
api/limiter.py -- Shared slowapi rate limiter and the per-route limit strings.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. Limits are keyed on the client IP.

Decorator order matters: @router.post(...) goes on top and @limiter.limit(...)
directly above the def. Reversed, FastAPI registers the unwrapped function
and the limit is never checked.

    @router.post("/auth/login")
    @limiter.limit(LOGIN_LIMIT)
    def login(request: Request, ...):

The limited handler must take a `request: Request` parameter.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

# Applied to register and login.
LOGIN_LIMIT = _settings.login_rate_limit
FORGOT_PASSWORD_LIMIT = _settings.forgot_password_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
