from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    service = getattr(request.app.state, "envelope_service", None)
    providers = sorted(provider.value for provider in service.registry.initialized()) if service else []
    return {"status": "ok", "providers": providers}
