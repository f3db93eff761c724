import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from offline_sync.routers import alerts, auth, offline
from offline_sync.runtime import SyncRuntime, build_runtime


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def create_app(runtime: Optional[SyncRuntime] = None) -> FastAPI:
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        runtime.controller.stop()
        if runtime.backend is not None:
            await runtime.backend.aclose()

    app = FastAPI(title="Community Offline Sync", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime

    cors_origins = _parse_csv_env("CORS_ORIGINS", "*")
    allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # Browsers reject wildcard CORS with credentials enabled.
        allow_credentials=not allow_any_origin,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    trusted_hosts = _parse_csv_env("TRUSTED_HOSTS", "*")
    if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    app.include_router(offline.router)
    app.include_router(auth.router)
    app.include_router(alerts.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready():
        backend_configured = runtime.backend.configured if runtime.backend is not None else True
        return {
            "status": "ready",
            "backend_configured": backend_configured,
            "online": runtime.monitor.is_online(),
            "replay_kinds": runtime.dispatcher.kinds(),
        }

    return app


app = create_app()
