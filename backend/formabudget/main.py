from __future__ import annotations

import time
import uuid
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from formabudget.api.router import api_router
from formabudget.core.settings import settings
from formabudget.core.logging import setup_logging
from formabudget.core.errors import error_payload, AppHTTPException
from formabudget.core.request_id import set_request_id, get_request_id, ensure_request_id
from formabudget.core.rate_limit import rate_limiter
from formabudget.core.security import extract_user_id

from formabudget.core.realtime import ConnectionManager
from formabudget.api.ws import router as ws_router

"""
Application FastAPI (entrypoint).

Rôle (fonctionnel) :
- Configure l’application (settings, CORS, middlewares, routers).
- Observabilité :
  - request_id propagé (X-Request-Id)
  - logs JSON par requête (timing, status, client_ip, utilisateur)
  - seuil de “slow request”
- Rate-limit (optionnel) sur les routes de gestion (plans, budget, besoins, facturation).
- Erreurs client au format unique error_payload (y compris validation et 500).
- Manager WebSocket partagé : invalidation de cache côté back-office.

Aucune logique métier ici :
- formabudget.services : opérations métier (résultats typés)
- formabudget.api      : routes
- formabudget.core     : composants transverses
"""


class UTF8JSONResponse(JSONResponse):
    """Réponse JSON avec charset UTF-8 explicite (libellés accentués)."""
    media_type = "application/json; charset=utf-8"


setup_logging(getattr(settings, "LOG_LEVEL", "INFO"))

log = logging.getLogger("formabudget")
http_log = logging.getLogger("formabudget.http")

SLOW_MS = int(getattr(settings, "SLOW_REQUEST_MS", 800))


def _split_origins(value: str) -> list[str]:
    """'a,b,c' -> ['a', 'b', 'c']"""
    if not value:
        return []
    return [o.strip() for o in value.split(",") if o.strip()]


app = FastAPI(
    title=getattr(settings, "APP_NAME", "FormaBudget API"),
    debug=getattr(settings, "DEBUG", False),
    default_response_class=UTF8JSONResponse,
)

# accessible via request.app.state.ws_manager
app.state.ws_manager = ConnectionManager()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_split_origins(getattr(settings, "CORS_ORIGINS", "")) or ["http://localhost:3000"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-API-Key",
        "X-User-Id",
        "X-Request-Id",
    ],
)

app.include_router(api_router)
app.include_router(ws_router)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid.uuid4())


def _error_response(
    request: Request, status: int, code: str, message: str, details: Optional[Any] = None
) -> UTF8JSONResponse:
    return UTF8JSONResponse(
        status_code=status,
        content=error_payload(
            code=code,
            message=message,
            status=status,
            request_id=_request_id(request),
            details=details,
        ),
    )


def _from_detail(request: Request, status: int, detail: Any, default_code: str, default_message: str):
    """Réponse d’erreur à partir d’un detail {code, message, details} (AppHTTPException)."""
    if isinstance(detail, dict):
        return _error_response(
            request,
            status,
            str(detail.get("code", default_code)),
            str(detail.get("message", default_message)),
            detail.get("details"),
        )
    return _error_response(request, status, default_code, str(detail) if detail else default_message)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    rid = ensure_request_id(request.headers.get("X-Request-Id"))
    request.state.request_id = rid

    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response
    finally:
        duration_ms = int((time.perf_counter() - start) * 1000)

        level = logging.WARNING if duration_ms >= SLOW_MS else logging.INFO
        http_log.log(
            level,
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": getattr(response, "status_code", None),
                "duration_ms": duration_ms,
                "client_ip": request.client.host if request.client else None,
                "actor": extract_user_id(request),
            },
        )

        set_request_id(None)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Les préflights CORS ne sont jamais limités ; dépassement -> 429 au format standard."""
    if request.method == "OPTIONS" or not rate_limiter.applies_to(request.url.path):
        return await call_next(request)

    try:
        rate_limiter.check(request)
    except AppHTTPException as exc:
        return _from_detail(request, exc.status_code, exc.detail, "RATE_LIMITED", "Trop de requêtes")

    return await call_next(request)


@app.exception_handler(AppHTTPException)
async def app_http_exception_handler(request: Request, exc: AppHTTPException):
    return _from_detail(request, exc.status_code, exc.detail, "HTTP_ERROR", "Erreur HTTP")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """404 / 405 natifs -> payload standard."""
    default_code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return _from_detail(request, exc.status_code, exc.detail, default_code, "Erreur HTTP")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 avec erreurs par champ, même forme que les ValidationFailed des services."""
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        fields.setdefault(".".join(loc) or "_form", []).append(str(err.get("msg", "Valeur invalide")))
    return _error_response(request, 422, "VALIDATION_ERROR", "Requête invalide", fields)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error: %s", exc)
    return _error_response(request, 500, "INTERNAL_ERROR", "Erreur interne du serveur")
