import logging
import os
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI

from divination.config import SettingsStore, settings_from_env
from divination.models import GenerationSettings
from divination.personas import load_personas
from divination.pipeline import GenerationPipeline
from divination.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


def create_app(
    personas_path: Path | None = None,
    settings: GenerationSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    resolved = personas_path or (Path(os.environ["PERSONAS_PATH"]) if os.getenv("PERSONAS_PATH") else None)

    app = FastAPI(title="Divination Masters")
    app.state.personas = load_personas(resolved)
    app.state.settings = SettingsStore(settings if settings is not None else settings_from_env())
    app.state.transport = transport
    app.state.pipeline = GenerationPipeline(transport=transport)
    app.include_router(router, prefix="/api")

    logger.info("Loaded %d personas", len(app.state.personas))
    return app


# Default app instance for uvicorn (uses PERSONAS_PATH env var or the bundled presets)
app = create_app()
