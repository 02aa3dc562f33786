from .threads import router as threads_router
from .bot import router as bot_router

__all__ = ["threads_router", "bot_router"]
