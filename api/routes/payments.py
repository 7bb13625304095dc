"""
api/routes/payments.py -- Disabled payments endpoint.

Payments and trial limits are switched off: every account has unlimited
access. The route stays so existing clients get a well-formed answer instead
of a 404. No payment provider is contacted and no counters are touched.

Routes:
  POST    /payments -- 200 {success, message, disabled: true}
  OPTIONS /payments -- 200 empty (CORS preflight)
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from api.models import PaymentsDisabledResponse

router = APIRouter()


@router.api_route("/payments", methods=["POST", "OPTIONS"])
async def payments(request: Request) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=200)
    return JSONResponse(content=PaymentsDisabledResponse().model_dump())
