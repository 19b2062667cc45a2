from fastapi import Request

from signing_desk.services.envelope_service import EnvelopeService


def get_envelope_service(request: Request) -> EnvelopeService:
    return request.app.state.envelope_service
