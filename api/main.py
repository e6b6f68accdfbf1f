"""
FastAPI Backend for the AI contract generation workflow.

This module provides the REST API layer over the GenerationService:
- Prompt analysis and session creation
- Mandatory, optional and custom clause generation and approval
- Contract preview and completion
- Session snapshots for clients that persist step progress
- Bearer authentication, rate limiting and security headers

Architecture:
    Client -> FastAPI -> GenerationService -> Agents / SessionStore
"""

import asyncio
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

import msgspec
from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from api.security import (
    bearer_token,
    get_security_headers,
    get_tls_config,
    log_security_audit,
    sanitize_session_data,
    validate_environment_security,
    verify_access_token,
)
from drafting.error_handling import (
    AgentError,
    ConflictError,
    ContractDraftingError,
    GatewayError,
    NotFoundError,
    RequestInFlightError,
    RequestTimeoutError,
    UnauthenticatedError,
    ValidationError,
)
from drafting.generation_service import GenerationService, create_generation_service
from drafting.logging_config import setup_logging
from drafting.models import AnalysisResult, CustomClauseSpec, MandatoryFields, Session

load_dotenv()

setup_logging(
    log_dir="logs",
    level=os.getenv("LOG_LEVEL", "INFO"),
    rotation="100 MB",
    retention="30 days",
)

API_PREFIX = "/api/v1/contract-generation"


# =============================================================================
# FastAPI Application Setup
# =============================================================================

app = FastAPI(
    title="AI Contract Generation API",
    description="Five-step AI-assisted contract drafting with clause-by-clause approval",
    version="1.0.0",
)

# CORS configuration for frontend communication
cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8000"
).split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting: requests per window (sliding window algorithm)
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "50"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))

PUBLIC_PATHS = {"/", "/health", "/docs", "/openapi.json"}


# =============================================================================
# Middleware Stack
# =============================================================================


@app.middleware("http")
async def bearer_auth_middleware(request: Request, call_next):
    """Require a valid bearer token when AUTH_TOKEN_SECRET is set. Skips public endpoints."""
    secret = os.getenv("AUTH_TOKEN_SECRET")
    request.state.user_id = None

    if not secret or request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
        return await call_next(request)

    token = bearer_token(request.headers.get("authorization"))
    user_id = verify_access_token(token, secret) if token else None
    if user_id is None:
        log_security_audit("token_rejected", "-", {"path": request.url.path, "token_present": bool(token)})
        return JSONResponse(
            status_code=401,
            content={"detail": "Unauthorized: Invalid or expired token"},
        )

    request.state.user_id = user_id
    return await call_next(request)


# In-memory rate limiter (per-IP request tracking)
request_counts: Dict[str, list] = {}


@app.middleware("http")
async def rate_limit_middleware(request, call_next):
    """Sliding window rate limiter. Bypasses localhost for development."""
    client_ip = request.client.host if request.client else "unknown"

    if client_ip in ["127.0.0.1", "localhost", "::1"]:
        return await call_next(request)

    now = time.time()

    if client_ip not in request_counts:
        request_counts[client_ip] = []

    # Remove expired timestamps
    request_counts[client_ip] = [
        ts for ts in request_counts[client_ip] if now - ts < RATE_LIMIT_WINDOW
    ]

    if len(request_counts[client_ip]) >= RATE_LIMIT_REQUESTS:
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    request_counts[client_ip].append(now)
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request, call_next):
    """Inject security headers (CSP, X-Frame-Options, etc.) into all responses."""
    response = await call_next(request)
    security_headers = get_security_headers()
    for header, value in security_headers.items():
        response.headers[header] = value
    return response


# =============================================================================
# Error Mapping
# =============================================================================

ERROR_STATUS = [
    (ValidationError, 400),
    (UnauthenticatedError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (RequestInFlightError, 409),
    (RequestTimeoutError, 504),
    (AgentError, 502),
]


def status_for(error: ContractDraftingError) -> int:
    if isinstance(error, GatewayError):
        return error.status_code or 502
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


@app.exception_handler(ContractDraftingError)
async def drafting_error_handler(request: Request, exc: ContractDraftingError):
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        status=status,
        error=exc.message,
        error_type=type(exc).__name__
    )
    return JSONResponse(status_code=status, content={"detail": exc.user_message})


def _convert(data: Any, target: Type, what: str) -> Any:
    try:
        return msgspec.convert(data, type=target)
    except msgspec.ValidationError as e:
        raise ValidationError(f"Invalid {what}: {e}", user_message=f"Invalid {what}: {e}") from e


# =============================================================================
# Service Singleton
# =============================================================================

service: Optional[GenerationService] = None


def get_service() -> GenerationService:
    """Lazy initialization of the generation service singleton."""
    global service
    if service is None:
        service = create_generation_service()
        logger.info("GenerationService initialized")
    return service


def current_user(request: Request) -> Optional[str]:
    return getattr(request.state, "user_id", None)


async def owned_session(
    session_id: str,
    request: Request,
    svc: GenerationService = Depends(get_service)
) -> Session:
    """Load a session the caller may act on; other users' sessions are reported missing."""
    session = await asyncio.to_thread(svc.store.get, session_id)
    user_id = current_user(request)
    if session is None or (user_id and session.user_id and session.user_id != user_id):
        raise NotFoundError(f"Session not found: {session_id}")
    return session


# =============================================================================
# Request Models
# =============================================================================


class AnalyzePromptRequest(BaseModel):
    """Free-text description of the contract the user needs."""

    user_prompt: str


class CreateSessionRequest(BaseModel):
    """Template chosen in step 2 with the step 1 prompt and analysis."""

    template_id: str
    initial_prompt: str
    ai_analysis_data: Optional[Dict[str, Any]] = None


class AnalyzeRequirementsRequest(BaseModel):
    """Step 3 explanation and party fields for mandatory clause generation."""

    explanation: str
    mandatory_fields: Dict[str, Any] = {}
    template_id: Optional[str] = None
    user_context: Dict[str, Any] = {}


class ClauseDecisionRequest(BaseModel):
    clause_id: str
    approved: bool = True
    user_modifications: Optional[str] = None


class GenerateOptionalClausesRequest(BaseModel):
    template_id: Optional[str] = None


class CustomClauseRequest(BaseModel):
    title: str
    description: str


class GenerateCustomClausesRequest(BaseModel):
    custom_clauses: List[CustomClauseRequest]


class CompleteRequest(BaseModel):
    final_review_data: Dict[str, Any] = {}


class SearchUserRequest(BaseModel):
    app_id: str
    requesting_user_id: Optional[str] = None


# =============================================================================
# API Endpoints
# =============================================================================


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "AI Contract Generation API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "analyze_prompt": f"{API_PREFIX}/analyze-prompt",
            "sessions": f"{API_PREFIX}/sessions",
            "search_user": f"{API_PREFIX}/search-user",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.post(f"{API_PREFIX}/analyze-prompt")
async def analyze_prompt(body: AnalyzePromptRequest, svc: GenerationService = Depends(get_service)):
    """Step 1: match the user's request to contract templates."""
    analysis = await svc.analyze_prompt(body.user_prompt)
    return msgspec.to_builtins(analysis)


@app.post(f"{API_PREFIX}/sessions")
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    svc: GenerationService = Depends(get_service)
):
    """Step 2: create the server session for the selected template."""
    analysis = None
    if body.ai_analysis_data:
        analysis = _convert(body.ai_analysis_data, AnalysisResult, "analysis data")
    session = await svc.create_session(
        body.template_id, body.initial_prompt, analysis, user_id=current_user(request)
    )
    log_security_audit("session_created", session.id, {"user_id": current_user(request)})
    return msgspec.to_builtins(session)


@app.get(f"{API_PREFIX}/sessions/{{session_id}}")
async def get_session(session: Session = Depends(owned_session), svc: GenerationService = Depends(get_service)):
    """Session snapshot; expired sessions are reported as abandoned."""
    return msgspec.to_builtins(await svc.get_session(session.id))


@app.put(f"{API_PREFIX}/sessions/{{session_id}}")
async def put_session(
    session_id: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    svc: GenerationService = Depends(get_service)
):
    """Store a full session snapshot."""
    snapshot = _convert(payload, Session, "session")
    if snapshot.id != session_id:
        raise ValidationError(f"Session id mismatch: {snapshot.id} != {session_id}")

    existing = await asyncio.to_thread(svc.store.get, session_id)
    user_id = current_user(request)
    if existing is not None and user_id and existing.user_id and existing.user_id != user_id:
        raise NotFoundError(f"Session not found: {session_id}")

    logger.debug("Session snapshot stored", session_id=session_id, session_data=sanitize_session_data(snapshot.session_data))
    await asyncio.to_thread(svc.store.put, snapshot)
    return msgspec.to_builtins(snapshot)


@app.patch(f"{API_PREFIX}/sessions/{{session_id}}")
async def patch_session(
    changes: Dict[str, Any] = Body(...),
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Apply a partial update; ``session_data`` is merged key by key."""
    logger.debug(
        "Session patched",
        session_id=session.id,
        fields=sorted(changes),
        session_data=sanitize_session_data(changes.get("session_data") or {})
    )
    updated = await asyncio.to_thread(svc.store.patch, session.id, changes)
    return msgspec.to_builtins(updated)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/analyze-requirements")
async def analyze_requirements(
    body: AnalyzeRequirementsRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Step 3: generate the mandatory clauses."""
    fields = _convert(body.mandatory_fields, MandatoryFields, "mandatory fields")
    result = await svc.generate_mandatory_clauses(session.id, body.explanation, fields, body.template_id)
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/approve-clause")
async def approve_clause(
    body: ClauseDecisionRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Approve or reject one clause; mandatory clauses cannot be rejected."""
    result = await svc.approve_clause(session.id, body.clause_id, body.approved, body.user_modifications)
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/reanalyze-clause")
async def reanalyze_clause(
    body: ClauseDecisionRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Redraft one clause from the user's requested changes."""
    result = await svc.reanalyze_clause(session.id, body.clause_id, body.user_modifications or "")
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/generate-optional-clauses")
async def generate_optional_clauses(
    body: GenerateOptionalClausesRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Step 4: draft the template's optional clauses."""
    result = await svc.generate_optional_clauses(session.id, body.template_id)
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/generate-custom-clauses")
async def generate_custom_clauses(
    body: GenerateCustomClausesRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Step 4: draft user-authored custom clauses."""
    specs = [CustomClauseSpec(title=c.title, description=c.description) for c in body.custom_clauses]
    result = await svc.generate_custom_clauses(session.id, specs)
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/generate-preview")
async def generate_preview(session: Session = Depends(owned_session), svc: GenerationService = Depends(get_service)):
    """Step 5: render the approved clauses and score compliance."""
    result = await svc.generate_preview(session.id)
    return msgspec.to_builtins(result)


@app.post(f"{API_PREFIX}/sessions/{{session_id}}/complete")
async def complete_session(
    body: CompleteRequest,
    session: Session = Depends(owned_session),
    svc: GenerationService = Depends(get_service)
):
    """Step 5: sign off the contract."""
    result = await svc.complete_session(session.id, body.final_review_data)
    log_security_audit("session_completed", session.id, {"user_id": session.user_id})
    return msgspec.to_builtins(result)


@app.get(f"{API_PREFIX}/sessions/{{session_id}}/step3/resume-data")
async def step3_resume_data(session: Session = Depends(owned_session), svc: GenerationService = Depends(get_service)):
    return msgspec.to_builtins(await svc.resume_data(session.id, 3))


@app.get(f"{API_PREFIX}/sessions/{{session_id}}/step4-resume")
async def step4_resume_data(session: Session = Depends(owned_session), svc: GenerationService = Depends(get_service)):
    return msgspec.to_builtins(await svc.resume_data(session.id, 4))


@app.post(f"{API_PREFIX}/search-user")
async def search_user(body: SearchUserRequest, svc: GenerationService = Depends(get_service)):
    """Resolve a counterparty by app id."""
    app_id = body.app_id.strip()
    if not app_id:
        raise ValidationError("App ID is required", user_message="App ID is required")
    if body.requesting_user_id and app_id == body.requesting_user_id.strip():
        raise ValidationError(
            "Cannot search for yourself",
            user_message="You cannot add yourself as the second party."
        )

    party = await svc.lookup_party(app_id)
    if party is None:
        raise NotFoundError(f"User not found: {app_id}", user_message="User not found")
    return {"user_info": msgspec.to_builtins(party)}


# =============================================================================
# Application Lifecycle Events
# =============================================================================


@app.on_event("startup")
async def startup_event():
    """Validate configuration and initialize services on startup."""
    logger.info("Starting AI Contract Generation API")

    security_validation = validate_environment_security()

    if not security_validation["valid"]:
        for error in security_validation["errors"]:
            logger.error(f"Security validation error: {error}")
        raise ValueError(
            "Security validation failed. Check environment configuration:\n"
            + "\n".join(f"  - {error}" for error in security_validation["errors"])
        )

    for warning in security_validation["warnings"]:
        logger.warning(f"Security warning: {warning}")

    logger.info("Security validation passed")
    svc = get_service()

    expire_sessions = getattr(svc.store, "expire_sessions", None)
    if expire_sessions is not None:
        expired = await asyncio.to_thread(expire_sessions)
        logger.info(f"Expired session sweep completed: {expired} sessions abandoned")

    tls_config = get_tls_config()
    if tls_config:
        logger.info("TLS/SSL enabled")
    else:
        logger.warning("TLS/SSL not enabled - use HTTPS in production")

    logger.info("API startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down AI Contract Generation API")
