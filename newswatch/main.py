from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, HttpUrl

from .jobs import JobStateError
from .logging import configure_logging
from .runner import JobRunner
from .settings import Settings, settings

logger = logging.getLogger(__name__)


class WebhookIn(BaseModel):
    url: HttpUrl


def create_app(app_settings: Optional[Settings] = None, runner: Optional[JobRunner] = None) -> FastAPI:
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level)
        app.state.runner = runner or JobRunner(cfg)
        if cfg.scheduler_enabled:
            app.state.runner.start()
        logger.info("app_startup")
        try:
            yield
        finally:
            await app.state.runner.stop()

    app = FastAPI(lifespan=lifespan)

    def _runner() -> JobRunner:
        return app.state.runner

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "scheduler": _runner().is_running()}

    @app.get("/jobs")
    def list_jobs():
        return _runner().summary()

    @app.get("/jobs/{job_id}")
    def get_job(job_id: str):
        store = _runner().store
        state = store.state_of(job_id)
        if state is None:
            raise HTTPException(status_code=404, detail="Not found")
        program = store.load(job_id)
        return {"job_id": job_id, "state": state.value, "program": program.model_dump(mode="json")}

    @app.post("/jobs/{job_id}/reset")
    def reset_job(job_id: str):
        store = _runner().store
        if store.state_of(job_id) is None:
            raise HTTPException(status_code=404, detail="Not found")
        try:
            store.reset(job_id)
        except JobStateError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return {"job_id": job_id, "state": "unprocessed"}

    @app.post("/discover")
    async def discover_now():
        registered = await _runner().discover()
        return {"registered": registered}

    @app.post("/dispatch")
    async def dispatch_now():
        started = await _runner().dispatch()
        return {"started": started}

    @app.get("/webhooks")
    def webhook_count():
        return {"count": len(_runner().registry.load())}

    @app.post("/webhooks", status_code=status.HTTP_201_CREATED)
    def add_webhook(body: WebhookIn):
        _runner().registry.add(str(body.url))
        return {"ok": True}

    return app


app = create_app()
