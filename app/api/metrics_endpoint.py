"""Prometheus scrape endpoint (text exposition format, not JSON).

Series of interest besides the HTTP ones:

  access_authorizations_total{outcome}
  access_codes_generated_total{origin}
  bind_races_lost_total
  payment_verifications_total{result}

Restrict /metrics to the Prometheus network in production.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
