"""Persona catalogue endpoints."""

from fastapi import APIRouter, HTTPException, Request

from divination.models import Persona
from divination.personas import default_persona, find_persona

router = APIRouter()


def resolve_persona(request: Request, persona_id: str | None) -> Persona:
    """Look up a persona by id, or the default one when no id is given."""
    personas = request.app.state.personas
    persona = find_persona(personas, persona_id) if persona_id else default_persona(personas)
    if persona is None:
        raise HTTPException(404, f"Persona '{persona_id}' not found" if persona_id else "No personas loaded")
    return persona


def _summary(persona: Persona) -> dict:
    return {
        "id": persona.id,
        "display_name": persona.display_name,
        "description": persona.description,
        "categories": sorted(persona.overrides),
    }


@router.get("/personas")
async def list_personas(request: Request):
    """List the available personas, default first."""
    personas = request.app.state.personas
    default = default_persona(personas)
    ordered = sorted(personas, key=lambda p: p is not default)
    return [_summary(p) for p in ordered]


@router.get("/personas/{persona_id}")
async def get_persona(persona_id: str, request: Request):
    """Get one persona's public fields."""
    return _summary(resolve_persona(request, persona_id))
