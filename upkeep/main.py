"""ASGI application entrypoint."""

from __future__ import annotations

from fastapi import FastAPI

from upkeep.api.v1.router import get_api_router
from upkeep.core.config import get_config
from upkeep.core.startup import bootstrap


def create_app() -> FastAPI:
    cfg = get_config()
    app = FastAPI(title=cfg.APP_NAME, version=cfg.APP_VERSION)
    app.include_router(get_api_router())

    @app.get("/")
    def root() -> dict:
        return {"service": cfg.APP_NAME, "version": cfg.APP_VERSION, "api_prefix": cfg.API_PREFIX}

    return app


# Exposed for `uvicorn upkeep.main:app`.
app = create_app()


if __name__ == "__main__":
    import uvicorn

    bootstrap()
    uvicorn.run(app, host="0.0.0.0", port=8000)
