import asyncio
import time as time_module
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.platforms.ardor import ArdorAPI
from nft_dashboard.services.datasets import DatasetRegistry

from .routers.cache import CacheRouter
from .routers.data import DataRouter
from .routers.health import HealthRouter

RATE_WINDOW = 60
MAX_UNIQUE_IPS = 10000
CLEANUP_INTERVAL = 10.0


class DashboardServer:
    def __init__(self,
                 facade: UnifiedCacheFacade,
                 registry: DatasetRegistry,
                 config,
                 logger,
                 memory_stores: Optional[List[MemoryStore]] = None,
                 ardor: Optional[ArdorAPI] = None,
                 host: str = "0.0.0.0",
                 port: int = 3000):
        self.facade = facade
        self.registry = registry
        self.config = config
        self.logger = logger
        self.memory_stores = memory_stores or []
        self.ardor = ardor
        self.host = host
        self.port = port
        self.server_task: Optional[asyncio.Task] = None
        self._server: Optional[uvicorn.Server] = None
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(_app: FastAPI):
            self.logger.info(f"Dashboard API live at http://localhost:{self.port}/api")
            yield
            self.logger.info("Dashboard API shutting down...")

        app = FastAPI(title="NFT Dashboard API", lifespan=lifespan)
        app.add_middleware(GZipMiddleware, minimum_size=1000)

        @app.middleware("http")
        async def add_security_headers(request, call_next):
            response = await call_next(request)
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
            if request.method not in ("GET", "HEAD"):
                response.headers["Cache-Control"] = "no-store"
            elif request.url.path.startswith("/api/"):
                response.headers["Cache-Control"] = "public, max-age=0, s-maxage=30"
            return response

        request_counts = defaultdict(list)
        rate_limit = int(getattr(self.config, 'RATE_LIMIT_PER_MINUTE', 100) or 0)
        state = {"last_cleanup_time": 0.0}

        @app.middleware("http")
        async def rate_limit_middleware(request, call_next):
            if rate_limit <= 0 or not request.url.path.startswith("/api"):
                return await call_next(request)

            current_time = time_module.monotonic()
            if len(request_counts) > MAX_UNIQUE_IPS:
                if current_time - state["last_cleanup_time"] > CLEANUP_INTERVAL:
                    inactive = [
                        ip for ip, stamps in request_counts.items()
                        if not stamps or current_time - stamps[-1] > RATE_WINDOW
                    ]
                    for ip in inactive:
                        del request_counts[ip]
                    state["last_cleanup_time"] = current_time
                # still too many active clients: drop the oldest first
                while len(request_counts) > MAX_UNIQUE_IPS:
                    del request_counts[next(iter(request_counts))]

            client_ip = request.client.host if request.client else "unknown"
            if client_ip in request_counts:
                request_counts[client_ip] = [t for t in request_counts[client_ip] if current_time - t < RATE_WINDOW]

            if len(request_counts[client_ip]) >= rate_limit:
                return JSONResponse(
                    status_code=429,
                    content={"error": "Too many requests, please try again later."},
                    headers={"Retry-After": str(RATE_WINDOW)},
                )
            request_counts[client_ip].append(current_time)
            return await call_next(request)

        if getattr(self.config, 'ENABLE_CORS', False):
            allowed_origins = getattr(self.config, 'CORS_ORIGINS', [])
            if not allowed_origins:
                self.logger.warning("CORS enabled but no origins specified. CORS will effectively be disabled.")
            app.add_middleware(
                CORSMiddleware,
                allow_origins=allowed_origins,
                allow_credentials="*" not in allowed_origins,
                allow_methods=["GET", "POST", "DELETE"],
                allow_headers=["*"],
            )

        app.state.facade = self.facade
        app.state.registry = self.registry
        app.state.config = self.config
        app.state.logger = self.logger
        app.state.request_counts = request_counts

        app.include_router(DataRouter(self.facade, self.registry, self.logger).router)
        app.include_router(CacheRouter(self.facade, self.logger, self.memory_stores).router)
        app.include_router(HealthRouter(self.facade, self.registry, self.logger, self.ardor).router)
        return app

    async def start(self) -> asyncio.Task:
        """Start uvicorn inside the running event loop."""
        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            loop="asyncio",
            proxy_headers=True,
        )
        self._server = uvicorn.Server(config)
        # signals are handled by GracefulShutdownManager
        self._server.install_signal_handlers = lambda: None
        self.server_task = asyncio.create_task(self._run_server(), name="DashboardServer")
        return self.server_task

    async def _run_server(self):
        try:
            await self._server.serve()
        except asyncio.CancelledError:
            pass

    async def stop(self):
        if self._server:
            self._server.should_exit = True
        if self.server_task and not self.server_task.done():
            try:
                await asyncio.wait_for(self.server_task, timeout=5)
            except asyncio.TimeoutError:
                self.server_task.cancel()
            except asyncio.CancelledError:
                pass
