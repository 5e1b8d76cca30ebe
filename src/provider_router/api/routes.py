"""
provider-router API Routes.

All endpoints delegate to the process-wide RouterContext.

Endpoints:
    POST /v1/summaries       - Summarise page segments (cached per segment)
    POST /v1/speech          - Chunked speech synthesis (base64 audio)
    POST /v1/transcriptions  - Speech to text
    POST /v1/segments        - Drop cached summaries for removed segments
    GET  /v1/usage           - Token usage snapshot
    POST /v1/usage/reset     - Zero the usage counters
    GET  /v1/providers       - Catalog, active provider and routing order
    PUT  /v1/provider        - Switch the active provider (clears the cache)
    GET  /v1/keys            - Masked API key details
    PUT  /v1/keys            - Store or clear an API key
    GET  /health             - Health check
    GET  /metrics            - Prometheus metrics (requires prometheus_client)

Error Handling:
    All errors are returned as JSON with standardized format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>",
        "details": {...}
    }

    HTTP status codes are mapped from RouterError codes:
        - MISSING_INPUT -> 400 Bad Request
        - MISSING_API_KEY -> 401 Unauthorized
        - BUDGET_EXCEEDED -> 402 Payment Required
        - PROVIDER_FAILED / ALL_PROVIDERS_FAILED / NO_FREE_PROVIDERS -> 502 Bad Gateway
        - anything else -> 500 Internal Server Error

Example Usage:
    >>> import httpx
    >>> response = httpx.post(
    ...     "http://localhost:8000/v1/summaries",
    ...     json={"url": "https://example.com", "segments": [{"id": "s1", "text": "..."}]},
    ... )
    >>> response.json()["summaries"][0]["summary"]
"""
from __future__ import annotations

import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from provider_router import __version__
from provider_router.api.dependencies import get_context, warmup_context
from provider_router.api.schemas import (
    ApiKeyRequest,
    ProviderRequest,
    SegmentsUpdatedRequest,
    SpeechResponse,
    SummariseRequest,
    SummariseResponse,
    SynthesiseRequest,
    TranscribeRequest,
)
from provider_router.core.errors import ErrorCode, RouterError
from provider_router.core.logging import error, get_logger, set_request_id
from provider_router.core.metrics import metrics
from provider_router.services.context import RouterContext

router = APIRouter()

_LOG = get_logger("provider-router.api")

STATUS_BY_CODE = {
    ErrorCode.MISSING_INPUT: 400,
    ErrorCode.MISSING_API_KEY: 401,
    ErrorCode.BUDGET_EXCEEDED: 402,
    ErrorCode.PROVIDER_FAILED: 502,
    ErrorCode.ALL_PROVIDERS_FAILED: 502,
    ErrorCode.NO_FREE_PROVIDERS: 502,
}


def _new_request_id() -> str:
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)
    return rid


def _error_response(err: RouterError) -> JSONResponse:
    """Standardized JSON error response with the status mapped from the error code."""
    return JSONResponse(status_code=STATUS_BY_CODE.get(err.code, 500), content=err.to_dict())


def _internal_error(rid: str, operation: str, exc: Exception) -> JSONResponse:
    # Log internally, don't expose details
    error(_LOG, "unhandled_error", operation=operation, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": ErrorCode.INTERNAL_ERROR,
            "message": "Internal server error",
            "request_id": rid,
        },
    )


@router.post("/v1/summaries", response_model=SummariseResponse)
async def summarise(req: SummariseRequest, context: RouterContext = Depends(get_context)):
    """
    Summarise the segments of one page.

    Each segment is looked up in the cache first (active provider, then
    every routing candidate); misses go through the router and are cached
    under the provider that actually answered.
    """
    rid = _new_request_id()
    try:
        result = await context.summarise(
            req.url,
            [s.model_dump() for s in req.segments],
            req.language,
            req.provider,
        )
        return {"ok": True, **result}
    except RouterError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(rid, "summarise", e)


@router.post("/v1/speech", response_model=SpeechResponse)
async def synthesise(req: SynthesiseRequest, context: RouterContext = Depends(get_context)):
    """
    Synthesise speech for arbitrarily long text.

    The text is truncated at the configured ceiling, split into chunks the
    provider accepts and the chunk audio is concatenated in order.

    Returns:
        JSON with the base64 audio, plan metrics and the usage snapshot.
        The X-Request-Id header carries the request id.
    """
    rid = _new_request_id()
    try:
        outcome = await context.synthesise(req.text, req.voice, req.language, req.provider, req.format)
        return JSONResponse(
            content={"ok": True, **outcome.to_dict()},
            headers={"X-Request-Id": rid, "X-Chunks": str(len(outcome.plan.chunks))},
        )
    except RouterError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(rid, "synthesise", e)


@router.post("/v1/transcriptions")
async def transcribe(req: TranscribeRequest, context: RouterContext = Depends(get_context)):
    rid = _new_request_id()
    try:
        result = await context.transcribe(req.audio_b64, req.mime_type, req.filename, req.provider)
        return {"ok": True, **result}
    except RouterError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(rid, "transcribe", e)


@router.post("/v1/segments")
async def segments_updated(req: SegmentsUpdatedRequest, context: RouterContext = Depends(get_context)):
    removed = await context.segments_updated(req.url, [s.model_dump() for s in req.segments])
    return {"ok": True, "removed": removed}


@router.get("/v1/usage")
async def usage(context: RouterContext = Depends(get_context)):
    return {"ok": True, "usage": await context.usage()}


@router.post("/v1/usage/reset")
async def reset_usage(context: RouterContext = Depends(get_context)):
    rid = _new_request_id()
    try:
        return {"ok": True, "usage": await context.reset_usage()}
    except RouterError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(rid, "reset_usage", e)


@router.get("/v1/providers")
async def providers(context: RouterContext = Depends(get_context)):
    """Catalog entries, the active provider, the routing order and per-provider call state."""
    await context.initialise()
    return {
        "ok": True,
        "active": context.active_provider,
        "order": context.router.candidates(),
        "providers": [d.to_dict() for d in context.catalog.descriptors()],
        "states": context.router.provider_states(),
    }


@router.put("/v1/provider")
async def set_provider(req: ProviderRequest, context: RouterContext = Depends(get_context)):
    return {"ok": True, **await context.set_active_provider(req.provider)}


@router.get("/v1/keys")
async def get_api_key(provider: Optional[str] = None, context: RouterContext = Depends(get_context)):
    return {"ok": True, **await context.get_api_key(provider)}


@router.put("/v1/keys")
async def set_api_key(req: ApiKeyRequest, context: RouterContext = Depends(get_context)):
    return {"ok": True, **await context.set_api_key(req.api_key, req.provider)}


@router.get("/health")
async def health(context: RouterContext = Depends(get_context)):
    """
    Health check endpoint for load balancers and probes.

    Returns:
        dict: status, version, active provider, remaining budget and
        cache statistics.
    """
    await context.initialise()
    return {
        "status": "healthy",
        "version": __version__,
        "provider": context.active_provider,
        "dry_run": context.config.routing.dry_run,
        "remaining_tokens": context.tracker.remaining_tokens,
        "cache": context.cache.stats(),
    }


@router.get("/metrics")
def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Requires prometheus_client package. Returns placeholder text if unavailable.
    """
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)


async def warmup():
    """
    Hydrate the RouterContext on startup.

    Skipped when PROVIDER_ROUTER_SKIP_WARMUP=1 (tests).
    """
    if os.getenv("PROVIDER_ROUTER_SKIP_WARMUP", "").strip() in ("1", "true", "yes"):
        return
    await warmup_context()
