"""SlowAPI rate limiter singleton.

The pipeline endpoints run long-lived clone/install/build work, so
POST /deploy is rate limited per client IP:

    @router.post("/deploy")
    @limiter.limit(lambda: get_settings().deploy_rate_limit)
    def deploy(request: Request, ...):
        ...

SlowAPI needs the ``Request`` parameter even when the handler ignores it.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=[])
