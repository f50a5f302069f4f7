from fastapi import APIRouter, Response

from app.services.llm.client import LLMService
from app.services.metrics import get_event_counters

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {"status": "healthy", "service": "veston-api"}


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {"message": "Welcome to Veston API", "docs": "/docs", "health": "/health"}


@router.get("/health/llm")
async def llm_health():
    """Lightweight LLM health endpoint for frontend checks."""
    info = LLMService.get_instance().get_model_info()
    return {"ok": info["api_key_configured"], "llm": info}


@router.get("/metrics")
async def metrics():
    """Prometheus-style metrics endpoint."""
    counters = get_event_counters()
    lines = [
        "# HELP veston_pipeline_events_total Count of chat pipeline events.",
        "# TYPE veston_pipeline_events_total counter",
    ]
    if counters:
        for event in sorted(counters):
            value = counters[event]
            lines.append(f'veston_pipeline_events_total{{event="{event}"}} {value}')
    else:
        lines.append('veston_pipeline_events_total{event="none"} 0')
    body = "\n".join(lines) + "\n"
    return Response(body, media_type="text/plain; version=0.0.4")
