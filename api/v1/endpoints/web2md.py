# api/v1/endpoints/web2md.py
"""HTTP surface of the web-to-markdown service."""

import re
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from loguru import logger

from core.container import ServiceContainer
from core.exceptions import InvalidUrl
from models.request import ResolveRequest, ResolveResponse
from models.snapshot import ResolveMode, Snapshot, VersionHistory, VersionTrigger
from services.ratelimit.rate_limiter import RateLimitDecision, client_key
from services.web2md.canonicalize import canonicalize_url
from services.web2md.route_target import parse_web_target_segments, split_target_path

router = APIRouter()

MARKDOWN_MEDIA_TYPE = "text/markdown; charset=utf-8"


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def _enforce(services: ServiceContainer, request: Request, operation: str) -> RateLimitDecision:
    client = client_key(
        client_ip(request),
        request.headers.get("user-agent"),
        salt=services.settings.RATE_LIMIT_SALT,
    )
    return services.limiter.enforce(client, operation)


def _rate_headers(response: Response, decision: RateLimitDecision) -> None:
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(int(decision.reset_at))
    response.headers["Cache-Control"] = "no-store"


def _filename(snapshot: Snapshot) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", snapshot.title.lower()).strip("-")[:80]
    return f"{slug or snapshot.url_hash[:12]}.md"


def _markdown_response(
    snapshot: Snapshot, decision: Optional[RateLimitDecision], attachment: bool
) -> Response:
    response = Response(content=snapshot.markdown, media_type=MARKDOWN_MEDIA_TYPE)
    if decision is not None:
        _rate_headers(response, decision)
    else:
        response.headers["Cache-Control"] = "no-store"
    response.headers["X-Web2md-Version"] = str(snapshot.version)
    response.headers["X-Web2md-Engine"] = snapshot.source_engine
    if attachment:
        response.headers["Content-Disposition"] = f'attachment; filename="{_filename(snapshot)}"'
    return response


@router.post(
    "/web-to-md/resolve",
    response_model=ResolveResponse,
    response_model_exclude_none=True,
    response_model_by_alias=True,
)
async def resolve_snapshot(
    body: ResolveRequest,
    request: Request,
    response: Response,
    services: ServiceContainer = Depends(get_services),
):
    # reject bad URLs before they count against the client's quota
    canonical = canonicalize_url(body.target_url)
    operation = "revalidate" if body.mode is ResolveMode.REVALIDATE else "read"
    decision = _enforce(services, request, operation)

    logger.info(f"Resolve {canonical.normalized_url} (mode={body.mode.value})")
    result = await services.snapshots.resolve(
        body.target_url,
        mode=body.mode,
        trigger=body.trigger,
        model_override=body.model_override,
    )
    _rate_headers(response, decision)
    return ResolveResponse(
        snapshot=result.snapshot,
        from_cache=result.from_cache,
        fallback_to_cache=result.fallback_to_cache,
        warning=result.warning,
        mode=body.mode,
    )


@router.get(
    "/web-to-md/versions",
    response_model=VersionHistory,
    response_model_by_alias=True,
)
async def list_versions(
    request: Request,
    response: Response,
    url_hash: str = Query(..., alias="urlHash"),
    limit: int = Query(20, ge=1),
    services: ServiceContainer = Depends(get_services),
):
    decision = _enforce(services, request, "read")
    history = await services.snapshots.list_versions(url_hash, limit)
    _rate_headers(response, decision)
    return history


@router.get("/web-to-md/raw")
async def raw_markdown(
    request: Request,
    url: str = Query(..., min_length=1),
    services: ServiceContainer = Depends(get_services),
):
    cached = await services.snapshots.get_cached(url)
    if cached is not None:
        # stored snapshots are served without spending quota
        return _markdown_response(cached, None, attachment=True)

    decision = _enforce(services, request, "read")
    result = await services.snapshots.resolve(url)
    return _markdown_response(result.snapshot, decision, attachment=True)


@router.get("/web/{target:path}")
async def web_target(
    target: str,
    request: Request,
    services: ServiceContainer = Depends(get_services),
):
    parsed = parse_web_target_segments(split_target_path(target))
    if parsed is None:
        raise InvalidUrl("Path does not contain an http(s) target URL.")

    target_url = parsed.target_url
    if request.url.query:
        target_url = f"{target_url}?{request.url.query}"
    canonicalize_url(target_url)

    operation = "revalidate" if parsed.mode is ResolveMode.REVALIDATE else "read"
    decision = _enforce(services, request, operation)
    trigger: Optional[VersionTrigger] = VersionTrigger.REDO if parsed.suffix == "redo" else None
    result = await services.snapshots.resolve(target_url, mode=parsed.mode, trigger=trigger)

    response = _markdown_response(result.snapshot, decision, attachment=False)
    if result.warning:
        warning = " ".join(result.warning.split()).encode("ascii", "ignore").decode()
        response.headers["X-Web2md-Warning"] = warning[:200]
    return response
