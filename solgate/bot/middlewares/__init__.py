from solgate.bot.middlewares.db_session import DbSessionMiddleware
from solgate.bot.middlewares.throttle import ThrottleMiddleware
from solgate.bot.middlewares.user_context import UserContextMiddleware

__all__ = [
    "DbSessionMiddleware",
    "ThrottleMiddleware",
    "UserContextMiddleware",
]
