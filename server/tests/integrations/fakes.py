"""
Canned aiohttp responses and sessions for adapter tests.
"""

import json
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock


def fake_response(status: int = 200, json_data: Any = None, body: bytes = b"", text: Optional[str] = None) -> MagicMock:
    """An ``async with``-able context yielding a canned aiohttp response."""
    response = MagicMock()
    response.status = status
    response.headers = {}
    response.json = AsyncMock(return_value=json_data)
    response.read = AsyncMock(return_value=body)
    if text is None:
        text = json.dumps(json_data) if json_data is not None else ""
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def fake_session(*responses) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.request = MagicMock(side_effect=list(responses))
    return session
