"""IngestionService: wires up the gateways and runs until shutdown."""

from __future__ import annotations

import asyncio
import time

import structlog
import uvicorn

from .config import AccountConfig, ServiceConfig, load_accounts
from .health import create_health_app
from .interface import MessageStore, Notifier, ReplyDispatcher, ReplyGenerator, SearchIndex
from .models import ServiceStatus
from .notifier import WebhookNotifier
from .orchestrator import IngestionOrchestrator
from .pipeline import MessagePipeline
from .reply import SmtpReplyDispatcher, TemplateReplyGenerator
from .search_index import ElasticsearchIndex
from .shutdown import install_signal_handlers, remove_signal_handlers
from .store import SqlMessageStore

logger = structlog.get_logger()


class IngestionService:
    """Top-level process object.

    ``run()`` verifies the message store, prepares the search index,
    starts every account watcher and serves the FastAPI control app
    until SIGTERM / SIGINT.  On shutdown all watchers are stopped before
    any gateway is closed.

    Any gateway can be injected, which is how the tests run the service
    without real infrastructure.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        accounts: list[AccountConfig] | None = None,
        store: MessageStore | None = None,
        index: SearchIndex | None = None,
        notifier: Notifier | None = None,
        reply_generator: ReplyGenerator | None = None,
        reply_dispatcher: ReplyDispatcher | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self.accounts = accounts if accounts is not None else load_accounts(config.account_ids)
        self.store = store or SqlMessageStore(config.database)
        self.index = index or ElasticsearchIndex(config.elasticsearch)
        self.notifier = notifier or WebhookNotifier(config.webhooks)

        self.pipeline = MessagePipeline(
            store=self.store,
            index=self.index,
            notifier=self.notifier,
            reply_generator=reply_generator or TemplateReplyGenerator(),
            reply_dispatcher=reply_dispatcher or SmtpReplyDispatcher(self.accounts),
        )
        self.orchestrator = IngestionOrchestrator(
            self.accounts,
            pipeline=self.pipeline,
            store=self.store,
            index=self.index,
            config=config.sync,
        )
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """Prepare gateways and start the watchers.

        The store must be reachable; that is the only condition that
        aborts the process.  An unavailable search index only disables
        indexing until it comes back.
        """
        try:
            await self.store.ping()
        except Exception:
            logger.exception("message_store_unreachable")
            raise
        await self.store.initialize()

        try:
            await self.index.initialize()
        except Exception as exc:
            logger.warning("search_index_unavailable", error=str(exc))

        await self.orchestrator.start_all()
        self.status = ServiceStatus.RUNNING
        logger.info(
            "service_running",
            accounts=len(self.accounts),
            health_port=self.config.health_port,
        )

    async def shutdown(self) -> None:
        if self.status == ServiceStatus.STOPPED:
            return
        self.status = ServiceStatus.STOPPING
        logger.info("service_stopping")

        await self.orchestrator.stop_all()
        for name, gateway in (("notifier", self.notifier), ("index", self.index), ("store", self.store)):
            try:
                await gateway.close()
            except Exception as exc:
                logger.warning("gateway_close_failed", gateway=name, error=str(exc))

        self.status = ServiceStatus.STOPPED
        logger.info("service_stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run until SIGTERM / SIGINT.  Call via ``asyncio.run(service.run())``."""
        install_signal_handlers(self._shutdown_event)
        self.start_time = time.monotonic()
        logger.info("service_starting", configured_accounts=len(self.accounts))

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_health_server())
                try:
                    await self.startup()
                except Exception:
                    self.request_shutdown()
                    raise
                await self._shutdown_event.wait()
        finally:
            await self.shutdown()
            remove_signal_handlers()
