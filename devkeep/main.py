# devkeep/main.py
# FastAPI application: middleware, error envelope, routers and dev-only admin tools

from __future__ import annotations

from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from devkeep import __version__
from devkeep.config import CORS_ORIGINS, IS_DEV, IS_PROD
from devkeep.db import db_session, init_db
from devkeep.entitlements import update_subscription_plan
from devkeep.errors import AppError, Internal, PermissionDenied, ValidationFailed
from devkeep.models import PlanName, SubscriptionStatus
from devkeep.routes_auth import router as auth_router
from devkeep.routes_communities import router as communities_router
from devkeep.routes_dashboard import router as dashboard_router
from devkeep.routes_notifications import router as notifications_router
from devkeep.routes_projects import router as projects_router
from devkeep.routes_resources import commands_router, credentials_router, notes_router
from devkeep.routes_subscription import router as subscription_router

# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="DevKeep Backend", version=__version__)

# CORS configuration from config module
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()


# ---------------------------------------------------------
# Error envelope: {"error": <message>, "code": <kind>}
# ---------------------------------------------------------
_STATUS_CODES = {
    400: "validation_failed",
    401: "unauthenticated",
    403: "permission_denied",
    404: "not_found",
    405: "method_not_allowed",
}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if IS_DEV or exc.status_code >= 500:
        print(f"[ERROR] {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _STATUS_CODES.get(exc.status_code, "internal" if exc.status_code >= 500 else "error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = ValidationFailed.default_message
    return JSONResponse(status_code=400, content=ValidationFailed(message).to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    print(f"[ERROR] Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=Internal().to_dict())


# ---------------------------------------------------------
# Routers
# ---------------------------------------------------------
app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(communities_router)
app.include_router(credentials_router)
app.include_router(commands_router)
app.include_router(notes_router)
app.include_router(dashboard_router)
app.include_router(notifications_router)
app.include_router(subscription_router)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# ============================================================================
# DEV-ONLY ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/set_plan")
def admin_set_plan(user_id: int, plan: str, status: Optional[str] = SubscriptionStatus.active.value):
    """
    Change a user's plan and subscription status (dev/testing only).
    In production plans change only through the signed subscription webhook.
    """
    if not IS_DEV:
        raise PermissionDenied("Admin endpoints only available in dev")

    try:
        plan_enum = PlanName(plan)
    except ValueError:
        valid_plans = [p.value for p in PlanName]
        raise ValidationFailed(f"Invalid plan name. Valid options: {valid_plans}")

    try:
        status_enum = SubscriptionStatus(status)
    except ValueError:
        valid_statuses = [s.value for s in SubscriptionStatus]
        raise ValidationFailed(f"Invalid status. Valid options: {valid_statuses}")

    with db_session() as conn:
        update_subscription_plan(conn, user_id, plan_enum.value, status_enum.value)

    print(f"[ADMIN] Plan set: user_id={user_id}, plan={plan_enum.value}, status={status_enum.value}")
    return {"user_id": user_id, "plan": plan_enum.value, "status": status_enum.value}
