from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from signing_desk.api.dependencies.services import get_envelope_service
from signing_desk.core.logging import bind_context
from signing_desk.schemas.envelope import WebhookAck
from signing_desk.services.envelope_service import EnvelopeService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    service: EnvelopeService = Depends(get_envelope_service),
) -> Response:
    """Always 200 once authenticated; 401 only when the signature fails."""
    bind_context(provider=provider)
    adapter = service.registry.get(provider)
    payload = await request.body()
    signature = request.headers.get(adapter.webhook_signature_header)

    outcome = await service.process_webhook_event(provider, payload, signature)
    if adapter.webhook_ack is not None:
        return PlainTextResponse(adapter.webhook_ack)
    ack = WebhookAck(
        result=outcome.result.value,
        event_id=outcome.event_id,
        envelope_id=outcome.envelope_id,
        reason=outcome.reason,
    )
    return JSONResponse(ack.model_dump())
