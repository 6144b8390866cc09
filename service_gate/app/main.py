"""
Share Gate service.
"""

from typing import Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig

from .access.dispatcher import ResponseDispatcher
from .access.gate import AccessGate
from .entries.redis_store import RedisEntryStore
from .entries.store import EntryStore, InMemoryEntryStore
from .lookup.context import LookupContext
from .rules.engine import AccessEvaluator


SHARE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class GateService(BaseService):
    """Share Gate service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[EntryStore] = None,
        lookup_context: Optional[LookupContext] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("gate", 8080, config)

        self.lookup_context = lookup_context or LookupContext.from_config(self.config)
        self.store = store or self._create_store()
        self.evaluator = AccessEvaluator(
            self.lookup_context,
            metrics=self.metrics,
            dns_budget=self.config.dns_budget,
        )
        self.gate = AccessGate(
            self.store,
            self.lookup_context,
            self.evaluator,
            metrics=self.metrics,
            trust_forwarded_headers=self.config.trust_forwarded_headers,
            evaluation_timeout=self.config.evaluation_timeout,
        )
        self.dispatcher = ResponseDispatcher(
            self.config.upload_directory,
            proxy_timeout=self.config.proxy_timeout,
            transport=transport,
        )

        self._setup_gate_routes()

    def _create_store(self) -> EntryStore:
        """Redis when configured, otherwise in memory seeded from the entries file."""
        if self.config.redis_url:
            return RedisEntryStore(self.config.redis_url, lock_timeout=self.config.entry_lock_timeout)
        if self.config.entries_file:
            return InMemoryEntryStore.from_file(self.config.entries_file)
        return InMemoryEntryStore()

    def _setup_gate_routes(self):
        """Set up the share route."""

        @self.app.api_route("/{name:path}", methods=SHARE_METHODS)
        async def shot(name: str, request: Request):
            """Serve an entry if the requester is allowed to see it."""
            name = name.strip("/")
            entry = await self.gate.access(name, request)

            if entry is None:
                self.logger.info("Denied access", entry=name)
                return PlainTextResponse(self.config.not_found_message, status_code=404)

            self.logger.info("Granted access", entry=entry.name)
            return await self.dispatcher.dispatch(entry, request)

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "store": "redis" if isinstance(self.store, RedisEntryStore) else "memory",
            "geoip": "loaded" if self.lookup_context.geo is not None else "unavailable",
            "ipcat": "loaded" if self.lookup_context.categories is not None else "unavailable",
        }

    async def start(self):
        """Start gate service components."""
        if isinstance(self.store, RedisEntryStore):
            await self.store.start()

        self.logger.info("Gate service started")

    async def stop(self):
        """Stop gate service components."""
        if isinstance(self.store, RedisEntryStore):
            await self.store.stop()
        self.lookup_context.close()

        self.logger.info("Gate service stopped")


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = GateService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = GateService()
    service.run()
