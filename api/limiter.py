"""
api/limiter.py -- Process-wide slowapi limiter for the auth endpoints.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware) and
api/routes/v1/auth.py throttles POST /auth/login with it, keyed by client IP.
The budget string comes from LOGIN_RATE_LIMIT and is resolved per request.

Counters live in process memory. Run behind a single worker, or point
storage_uri at Redis, if the login budget must hold across workers.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
