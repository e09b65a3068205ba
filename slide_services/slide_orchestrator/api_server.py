"""HTTP surface of the slide orchestrator (FastAPI, served by uvicorn)."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Deque, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .. import __version__
from ..shared.config import Settings, debug_settings, get_settings
from ..shared.errors import InvalidAgentInput, RoutingUnavailable
from ..shared.models import GenerationRequest, GenerationResult, HealthCheck
from .agent_base import CancellationToken
from .executor import ExecutionState, StepExecutor, deck_generation_steps
from .orchestrator import MultiModelOrchestrator

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600.0


class RateLimiter:
    """Sliding one-hour window of request timestamps per client."""

    def __init__(self, limit: int, window: float = WINDOW_SECONDS) -> None:
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, client_id: str) -> bool:
        now = time.monotonic()
        hits = self._hits[client_id]
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if len(hits) >= self.limit:
            return False
        hits.append(now)
        self._prune(now)
        return True

    def _prune(self, now: float) -> None:
        stale = [client for client, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
        for client in stale:
            del self._hits[client]

    def __len__(self) -> int:
        return len(self._hits)


def _client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[MultiModelOrchestrator] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan"""
        debug_settings(settings)
        logger.info(f"🚀 {settings.service_name} started")
        yield
        logger.info(f"Shutting down {settings.service_name}")
        await app.state.orchestrator.aclose()

    app = FastAPI(
        title="Slide Orchestrator",
        description="Multi-model, multi-agent slide deck generation",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator or MultiModelOrchestrator(settings)
    app.state.rate_limiter = RateLimiter(settings.rate_limit_per_hour)
    running: Set[asyncio.Task] = set()

    # CORS (dev): allow browser clients to call endpoints directly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    def check_rate_limit(request: Request) -> None:
        client = _client_id(request)
        if not app.state.rate_limiter.allow(client):
            logger.warning(f"⚠️ Rate limit exceeded for {client}")
            raise HTTPException(status_code=429, detail="Rate limit exceeded, try again later")

    @app.get("/")
    async def root():
        """Service description"""
        orch: MultiModelOrchestrator = app.state.orchestrator
        return {
            "service": settings.service_name,
            "status": "healthy",
            "version": __version__,
            "policies": orch.policies.names(),
            "default_policy": settings.default_policy,
            "agents": [role.value for role in orch.agents],
            "timestamp": datetime.utcnow().isoformat(),
        }

    @app.get("/health", response_model=HealthCheck)
    async def health():
        return HealthCheck(service=settings.service_name, version=__version__)

    @app.get("/status")
    async def status():
        orch: MultiModelOrchestrator = app.state.orchestrator
        return {
            "agents": orch.agent_status(),
            "router": orch.router_status(),
            "task_queue": orch.queue_status(),
            "timestamp": datetime.utcnow().isoformat(),
        }

    @app.post("/generate", response_model=GenerationResult)
    async def generate(body: GenerationRequest, request: Request):
        """Generate a deck, with optional executive summary and audience adaptation"""
        check_rate_limit(request)
        logger.info(f"Generating deck for: {body.topic}")
        try:
            return await app.state.orchestrator.generate_presentation(body)
        except RoutingUnavailable as e:
            logger.error(f"❌ {e}")
            raise HTTPException(status_code=503, detail=str(e))
        except InvalidAgentInput as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/generate/stream")
    async def generate_stream(body: GenerationRequest, request: Request):
        """Stream step snapshots as NDJSON, then the final result.

        Emits lines:
          {"type": "progress", "state": {...}}
          {"type": "final", "result": {...}}
          {"type": "error", "message": str, "status": int}
        """
        check_rate_limit(request)
        orch: MultiModelOrchestrator = app.state.orchestrator
        token = CancellationToken()
        steps, runners, state = deck_generation_steps(orch, body, token)
        queue: "asyncio.Queue[Optional[ExecutionState]]" = asyncio.Queue()
        executor = StepExecutor(steps, runners, listener=queue.put_nowait)

        async def run() -> ExecutionState:
            try:
                return await executor.run()
            finally:
                queue.put_nowait(None)

        async def event_generator():
            task = asyncio.create_task(run())
            running.add(task)
            task.add_done_callback(running.discard)
            try:
                while True:
                    snapshot = await queue.get()
                    if snapshot is None:
                        break
                    yield json.dumps({"type": "progress", "state": snapshot.model_dump(mode="json")}) + "\n"
                await task
                if "deck" not in state:
                    failed = [log.message for log in executor.state.logs if log.type == "error"]
                    message = failed[-1] if failed else "Generation failed"
                    orch.retire(state["tracker"])
                    yield json.dumps({"type": "error", "message": message, "status": 503}) + "\n"
                    return
                result = await orch.build_result(state)
                yield json.dumps({"type": "final", "result": result.model_dump(mode="json")}) + "\n"
            finally:
                if not task.done():
                    # Client went away: remaining agents short-circuit to their defaults
                    logger.info("🛑 Stream closed early, cancelling generation")
                    token.cancel()
                    task.add_done_callback(lambda _: orch.retire(state["tracker"]))

        return StreamingResponse(event_generator(), media_type="application/x-ndjson")

    return app


app = create_app()


def main() -> None:
    """Start the orchestrator service"""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.service_name} on port {settings.service_port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
