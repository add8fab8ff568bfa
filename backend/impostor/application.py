from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from impostor.api.router import api_router
from impostor.config import settings
from impostor.runtime import ImpostorRuntime, runtime as default_runtime


def create_app(game_runtime: ImpostorRuntime | None = None) -> FastAPI:
    app = FastAPI(title="Impostor Backend", version="1.0.0")
    app.state.runtime = game_runtime or default_runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.on_event("startup")
    async def on_startup() -> None:
        app.state.runtime.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.runtime.shutdown()

    return app


app = create_app()
