"""FastAPI API endpoints under /api.

Endpoint groups: health + settings + key validation, personas, and
interpretation (whole-body, SSE stream, palm image). Shared state lives on
app.state: personas (list[Persona]), settings (SettingsStore) and
pipeline (GenerationPipeline).
"""

from fastapi import APIRouter

from .interpret import router as interpret_router
from .personas import router as personas_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(personas_router)
router.include_router(interpret_router)
