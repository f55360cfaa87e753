from aiogram import Router

from solgate.bot.routers import admin, billing, menu


def setup_routers() -> Router:
    router = Router()
    router.include_router(admin.router)
    router.include_router(menu.router)
    # billing owns the free-text signature handler, so it must come last
    router.include_router(billing.router)
    return router


__all__ = ["setup_routers"]
