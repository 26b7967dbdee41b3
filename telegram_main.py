from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Tuple

import uvicorn
from fastapi import FastAPI

from application.link_codes import InMemoryLinkCodeStore, LinkCodeSweeper
from application.linking import AccountLinker
from application.messaging import MessageDispatcher
from application.notifications import NotificationRouter
from config import WEBHOOK, Settings
from domain.repositories import BindingRepository, UserRepository
from infrastructure.telegram.bot_client import TelegramBotClient
from interfaces.http.telegram_routes import TelegramServices, router
from interfaces.telegram.commands import CommandDispatcher
from interfaces.telegram.updates import PollingUpdateSource, UpdateSource, WebhookUpdateSource

logger = logging.getLogger(__name__)


def build_repositories(settings: Settings) -> Tuple[UserRepository, BindingRepository]:
    if settings.db_backend == "postgres":
        from infrastructure.db.binding_repository_postgres import PostgresBindingRepository
        from infrastructure.db.user_repository_postgres import PostgresUserRepository

        return (
            PostgresUserRepository(settings.pg_params),
            PostgresBindingRepository(settings.pg_params),
        )

    from infrastructure.db.binding_repository_sqlite import SqliteBindingRepository
    from infrastructure.db.user_repository_sqlite import SqliteUserRepository

    return SqliteUserRepository(settings.db_path), SqliteBindingRepository(settings.db_path)


def create_app(settings: Settings) -> FastAPI:
    """
    Build the FastAPI app that hosts the webhook and linking endpoints and
    runs the chosen update source for the lifetime of the server.

    The notification router is exposed as `app.state.notifications` for the
    task layer to call.
    """

    users, bindings = build_repositories(settings)
    client = TelegramBotClient(settings.bot_token, send_timeout=settings.send_timeout)
    codes = InMemoryLinkCodeStore(ttl_seconds=settings.link_code_ttl)
    sweeper = LinkCodeSweeper(codes, interval_seconds=settings.link_code_sweep_interval)

    linker = AccountLinker(codes, bindings, users)
    dispatcher = MessageDispatcher(client, timeout_seconds=settings.send_timeout)

    task_url = None
    if settings.app_base_url:
        base_url = settings.app_base_url.rstrip("/")
        task_url = lambda task_id: f"{base_url}/tasks/{task_id}"  # noqa: E731
    notifications = NotificationRouter(bindings, dispatcher, task_url=task_url)
    commands = CommandDispatcher(linker, dispatcher)

    source: UpdateSource
    webhook = None
    if settings.mode == WEBHOOK:

        async def register() -> None:
            await client.set_webhook(settings.webhook_url, settings.webhook_secret)

        webhook = WebhookUpdateSource(commands, register=register, bot=client.bot)
        source = webhook
    else:
        source = PollingUpdateSource(
            commands, client, poll_timeout=settings.poll_timeout, bot=client.bot
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await client.start()
        if settings.mode != WEBHOOK:
            await client.delete_webhook()
        await source.start()
        sweeper.start()
        try:
            yield
        finally:
            await source.stop()
            await sweeper.stop()
            await client.close()

    app = FastAPI(title="Tracker Telegram bot", lifespan=lifespan)
    app.state.telegram = TelegramServices(
        linker=linker,
        dispatcher=dispatcher,
        notifications=notifications,
        deep_link=client.deep_link,
        webhook=webhook,
        webhook_secret=settings.webhook_secret,
    )
    app.state.notifications = notifications
    app.include_router(router)

    @app.get("/api/health")
    async def health() -> dict:
        return {"status": "ok", "telegram_mode": settings.mode}

    return app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Keep the per-request lines of the HTTP client out of INFO logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info("Starting Telegram integration in %s mode", settings.mode)
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":
    main()
