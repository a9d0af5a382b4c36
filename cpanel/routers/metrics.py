"""
Metrics Router - Prometheus Endpoint
"""
from fastapi import APIRouter, Response

from ..metrics import get_metrics_content_type, get_metrics_text

router = APIRouter(tags=["Observability"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint

    Should only be reachable from the scraper's network in production.
    """
    return Response(
        content=get_metrics_text(),
        media_type=get_metrics_content_type()
    )
