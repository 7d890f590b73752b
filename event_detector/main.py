import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from event_detector.core.deadline import TimeoutConfig
from event_detector.core.engine import Engine
from event_detector.core.loader import ImportEventModuleLoader
from event_detector.core.logging import setup_logging
from event_detector.core.options import ProcessOptions
from event_detector.exceptions import ConfigurationError, PayloadParseError
from event_detector.settings import Settings

setup_logging()


logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "x-correlation-id"
SOURCE_TRACKING_TOKEN_HEADER = "x-tracking-token"


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the webhook application.

    Args:
        engine: Engine with registered event definitions. When omitted, an engine is
            built that loads the modules listed in EVENT_DETECTOR_EVENT_MODULES at startup.
        settings: Settings used for the timeout budget of each request.

    Returns:
        The FastAPI application.
    """
    settings = settings or Settings()
    load_configured_modules = engine is None
    engine = engine or Engine(module_loader=ImportEventModuleLoader(settings.get_event_modules()))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup sequence initiated.")
        if load_configured_modules:
            engine.load_event_modules()
        logger.info(f"Serving {len(engine.registry)} event definitions: {engine.registry.names()}")
        yield
        logger.info("Application shutdown complete.")

    app = FastAPI(
        title="Event Detector",
        description="Detects business events in database change webhooks and runs their jobs.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["General"], status_code=200)
    async def health_check():
        """Report that the service is up and how many event definitions it serves."""
        return {"status": "ok", "events": len(engine.registry)}

    @app.post("/events", tags=["Events"])
    async def receive_event(request: Request):
        """Process one change-event webhook.

        Returns:
            200 with the InvocationResult, 400 with `{"errors": [...]}` for a malformed
            payload, or 500 with `{"errors": [...]}` for a configuration error.
        """
        body = await request.body()
        options = ProcessOptions(
            correlation_id=request.headers.get(CORRELATION_ID_HEADER),
            source_tracking_token=request.headers.get(SOURCE_TRACKING_TOKEN_HEADER),
            timeout_config=TimeoutConfig.from_settings(settings),
        )
        try:
            result = await engine.process_event(body, options)
        except PayloadParseError as e:
            logger.warning(f"Rejected malformed change event: {e}", extra={"error_type": e.__class__.__name__})
            errors = e.errors or [{"msg": str(e)}]
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})
        except ConfigurationError as e:
            logger.error(f"Configuration error while processing change event: {e}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"errors": [{"msg": str(e)}]}
            )
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.model_dump(mode="json"))

    return app


app = create_app()
