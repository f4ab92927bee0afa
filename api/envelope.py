"""
api/envelope.py -- Encrypted response envelope.

Every successful or policy/credential-level response body is serialized to
JSON, sealed with the shared AES-GCM key and sent as

    {"Data": "<base64(nonce || ciphertext || tag)>"}

Some endpoints add plain top-level fields next to "Data" (OTP validation
adds "validcheck"). Transport errors (bad JSON, wrong verb, bad hex) are NOT
enveloped; they happen before any sensitive payload exists.
"""

from __future__ import annotations

import json

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


def encrypted_response(
    request: Request,
    payload: BaseModel | dict,
    status_code: int = 200,
    **extra: str,
) -> JSONResponse:
    """Seal payload with the app's cipher and wrap it in the envelope."""
    body = payload.model_dump(exclude_none=True) if isinstance(payload, BaseModel) else payload
    sealed = request.app.state.cipher.seal(json.dumps(body).encode("utf-8"))
    resp = JSONResponse(status_code=status_code, content={"Data": sealed, **extra})
    resp.headers["Cache-Control"] = "no-store"
    return resp
