"""Application entrypoint."""

from __future__ import annotations

import asyncio

import httpx
from aiogram import Bot, Dispatcher
from aiogram.client.session.aiohttp import AiohttpSession

from solgate.bot.middlewares import (
    DbSessionMiddleware,
    ThrottleMiddleware,
    UserContextMiddleware,
)
from solgate.bot.routers import setup_routers
from solgate.bot.utils.telegram import TelegramTransport
from solgate.config import SolGateSettings, get_settings
from solgate.db.session import Database
from solgate.i18n import I18nService
from solgate.logging import configure_logging, logger
from solgate.services.automation import AutomationScheduler
from solgate.services.error_monitor import ErrorMonitor
from solgate.services.payments import PaymentVerifier
from solgate.services.solana import SolanaClient
from solgate.utils.locks import KeyedLock


def build_dispatcher(settings: SolGateSettings, database: Database) -> Dispatcher:
    dp = Dispatcher()
    dp.include_router(setup_routers())
    dp.errors.register(ErrorMonitor(settings=settings).handle_error)

    dp.update.outer_middleware(DbSessionMiddleware(database))
    throttle_middleware = ThrottleMiddleware(settings)
    user_context_middleware = UserContextMiddleware()
    for observer in (dp.message, dp.callback_query):
        observer.middleware(throttle_middleware)
        observer.middleware(user_context_middleware)
    return dp


def build_verifier(settings: SolGateSettings, http_client: httpx.AsyncClient) -> PaymentVerifier:
    return PaymentVerifier(
        SolanaClient(http_client, settings.solana),
        treasury_address=settings.solana.treasury_address,
        memo_program_ids=settings.solana.memo_program_ids,
    )


async def main() -> None:
    configure_logging()
    settings = get_settings()

    session = (
        AiohttpSession(proxy=settings.telegram_proxy) if settings.telegram_proxy else None
    )
    bot = Bot(token=settings.telegram_token.get_secret_value(), session=session)

    database = Database(settings=settings)
    await database.create_schema()
    dp = build_dispatcher(settings, database)

    i18n = I18nService()
    transport = TelegramTransport(bot)
    http_client = httpx.AsyncClient(timeout=settings.solana.request_timeout_seconds)
    scheduler = AutomationScheduler(database, transport, settings=settings, i18n=i18n)

    logger.info(
        "bot_starting",
        environment=settings.environment,
        treasury=settings.solana.treasury_address,
    )
    scheduler.start()
    try:
        await dp.start_polling(
            bot,
            settings=settings,
            i18n=i18n,
            locks=KeyedLock(),
            verifier=build_verifier(settings, http_client),
            transport=transport,
            drop_pending_updates=True,
        )
    finally:
        await scheduler.stop()
        await http_client.aclose()
        await database.dispose()
        await bot.session.close()
        logger.info("bot_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
