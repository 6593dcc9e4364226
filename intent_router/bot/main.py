"""Bot process entrypoint."""

from __future__ import annotations

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from dotenv import load_dotenv

from intent_router.app import create_app
from intent_router.bot.router import router
from intent_router.config.logging import configure_logging
from intent_router.config.settings import load_settings

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the Telegram bot polling loop."""

    load_dotenv(".env")
    settings = load_settings()
    settings.require_bot_config()
    configure_logging()

    app = create_app(settings)

    bot = Bot(token=settings.telegram_bot_token, default=DefaultBotProperties(parse_mode=None))
    dp = Dispatcher()
    dp.include_router(router)

    try:
        await dp.start_polling(bot, app=app)
    finally:
        logger.info("shutting down")
        app.close()


def run() -> None:
    """Console-script wrapper around `main()`."""

    asyncio.run(main())


if __name__ == "__main__":
    run()
