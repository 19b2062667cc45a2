from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from signing_desk.api.dependencies.auth import get_current_actor
from signing_desk.api.dependencies.services import get_envelope_service
from signing_desk.domain.envelope import Actor, DocumentType, EnvelopeStatus
from signing_desk.schemas.envelope import (
    EnvelopeCollection,
    EnvelopeCreate,
    EnvelopeCreated,
    EnvelopeRead,
    LeaseEnvelopeCreate,
    SigningUrlRead,
    VoidRequest,
)
from signing_desk.services.envelope_service import EnvelopeService


router = APIRouter(prefix="/envelopes", tags=["envelopes"])

PageNumber = Annotated[int, Query(ge=1)]
PageSize = Annotated[int, Query(ge=1, le=100)]


@router.get("", response_model=EnvelopeCollection)
async def list_envelopes_endpoint(
    page: PageNumber = 1,
    page_size: PageSize = 20,
    status_filter: EnvelopeStatus | None = Query(default=None, alias="status"),
    document_type: DocumentType | None = None,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeCollection:
    result = await service.list_envelopes(
        actor, status=status_filter, document_type=document_type, page=page, page_size=page_size
    )
    return EnvelopeCollection(
        items=[EnvelopeRead.model_validate(item) for item in result.items],
        total=result.total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=EnvelopeCreated, status_code=status.HTTP_201_CREATED)
async def create_envelope_endpoint(
    payload: EnvelopeCreate,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeCreated:
    created = await service.create(payload.to_request(), actor)
    return EnvelopeCreated(envelope=EnvelopeRead.model_validate(created.envelope), signing_urls=created.signing_urls)


@router.post("/from-lease/{lease_id}", response_model=EnvelopeCreated, status_code=status.HTTP_201_CREATED)
async def create_lease_envelope_endpoint(
    lease_id: str,
    payload: LeaseEnvelopeCreate,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeCreated:
    lease = payload.to_summary(
        lease_id,
        owner_id=actor.id,
        landlord_name=actor.name or "Landlord",
        landlord_email=actor.email,
    )
    created = await service.create_for_lease(lease, actor, provider=payload.provider)
    return EnvelopeCreated(envelope=EnvelopeRead.model_validate(created.envelope), signing_urls=created.signing_urls)


@router.get("/{envelope_id}", response_model=EnvelopeRead)
async def get_envelope_endpoint(
    envelope_id: str,
    refresh: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeRead:
    envelope = await service.get_envelope(envelope_id, actor, refresh=refresh)
    return EnvelopeRead.model_validate(envelope)


@router.post("/{envelope_id}/send", response_model=EnvelopeRead)
async def send_envelope_endpoint(
    envelope_id: str,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeRead:
    return EnvelopeRead.model_validate(await service.send(envelope_id, actor))


@router.post("/{envelope_id}/refresh", response_model=EnvelopeRead)
async def refresh_envelope_endpoint(
    envelope_id: str,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeRead:
    return EnvelopeRead.model_validate(await service.get_envelope(envelope_id, actor, refresh=True))


@router.get("/{envelope_id}/sign/{signer_id}", response_model=SigningUrlRead)
async def signing_url_endpoint(
    envelope_id: str,
    signer_id: str,
    return_url: str | None = Query(default=None, alias="returnUrl"),
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> SigningUrlRead:
    link = await service.get_signing_url(envelope_id, signer_id, actor, return_url=return_url)
    return SigningUrlRead(signing_url=link.url, expires_in=link.expires_in)


@router.post("/{envelope_id}/void", response_model=EnvelopeRead)
async def void_envelope_endpoint(
    envelope_id: str,
    payload: VoidRequest,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> EnvelopeRead:
    return EnvelopeRead.model_validate(await service.void(envelope_id, actor, payload.reason))


@router.get("/{envelope_id}/download/{document_id}")
async def download_document_endpoint(
    envelope_id: str,
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: EnvelopeService = Depends(get_envelope_service),
) -> Response:
    download = await service.download_document(envelope_id, document_id, actor)
    return Response(
        content=download.content,
        media_type=download.content_type,
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )
