"""
Trust Engine API

FastAPI application exposing:
- POST /stream/telemetry → 204 (no body)
- POST /honeypot/evaluate, POST /evaluate → JSON decisions
- POST /lockout/check, /lockout/attempt → 423 when locked
- POST /rate-limit/check → 429 when exceeded
- POST /inspect → 403 when injection is detected or the caller is blocked
- POST /tokens/issue, /tokens/refresh, /tokens/verify, /tokens/revoke,
  /tokens/revoke-user, /sessions/end
- GET /security-events, /security-events/stats
- Decoy endpoints that log and return fabricated data

Token issuance, user-wide revocation, session end, attempt recording and
the security event log require the X-Service-Key header.

The engine returns typed decisions; this module alone maps them to
HTTP status codes.
"""

from contextlib import asynccontextmanager
import hmac
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

from persistence.audit_logger import SecurityEventLog, SupabaseEventSink
from trustcore import __version__
from trustcore.config import EngineConfig
from trustcore.models.honeypot import DECOY_ENDPOINTS
from trustcore.orchestrator import TrustOrchestrator
from trustcore.schemas.inputs import (
    AssessPayload,
    AttemptPayload,
    IdentifierPayload,
    InspectPayload,
    RateLimitPayload,
    RefreshPayload,
    RevokeUserPayload,
    SessionPayload,
    TelemetryBatchPayload,
    TokenClaims,
    TokenPayload,
)
from trustcore.schemas.outputs import (
    EventStatistics,
    EventType,
    InjectionReport,
    RateLimitDecision,
    SecurityEvent,
    Severity,
    TokenPair,
    TokenVerification,
    TrapResult,
    TrustAssessment,
)
from trustcore.sweeper import BackgroundSweeper


load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("TRUST_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    orchestrator: Optional[TrustOrchestrator] = None
    sweeper: Optional[BackgroundSweeper] = None


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Trust Engine API...")
    config = EngineConfig.from_env()
    events = SecurityEventLog(sink=SupabaseEventSink.from_env(), max_events=config.max_events)
    state.orchestrator = TrustOrchestrator(config, events=events)
    state.sweeper = BackgroundSweeper(state.orchestrator, interval=config.sweep_interval)
    state.sweeper.start()
    logger.info("Trust Engine ready")

    yield

    # Shutdown
    logger.info("Shutting down Trust Engine API...")
    await state.sweeper.stop()
    state.orchestrator.close()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Trust Engine",
    description="Trust scoring and adaptive access control",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Request Helpers
# =============================================================================

def request_context(request: Request) -> Dict[str, Any]:
    """Identifier context for the calling client."""
    peer = request.client.host if request.client else None
    return state.orchestrator.context_processor.describe(
        request.headers, peer, path=request.url.path
    )


def require_service_key(x_service_key: Optional[str] = Header(None)) -> None:
    """Reject callers that do not present the configured service key."""
    expected = state.orchestrator.config.service_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service key not configured",
        )
    if x_service_key is None or not hmac.compare_digest(
        x_service_key.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service key",
        )


service_only = [Depends(require_service_key)]


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }


def enforce_rate_limit(identifier: str, policy: str, context: Dict[str, Any]) -> RateLimitDecision:
    """Raise 429 when the policy window is exhausted."""
    decision = state.orchestrator.check_rate_limit(identifier, policy, context)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=decision.message,
            headers=rate_limit_headers(decision),
        )
    return decision


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/docs")


# =============================================================================
# Telemetry Stream (HTTP 204)
# =============================================================================

@app.post("/stream/telemetry", status_code=status.HTTP_204_NO_CONTENT)
async def stream_telemetry(payload: TelemetryBatchPayload, request: Request):
    """
    Ingest a batch of interaction telemetry.

    - Never returns security decisions
    - Malformed individual events are dropped, not rejected
    """
    enforce_rate_limit(f"stream:{payload.session_id}", "api", request_context(request))

    try:
        stored = state.orchestrator.record_batch(payload)
        logger.debug(f"Stored {stored}/{len(payload.events)} events for {payload.session_id}")
    except Exception as e:
        logger.error(f"Telemetry stream error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error processing telemetry stream"
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Decisions (JSON Response)
# =============================================================================

@app.post("/honeypot/evaluate", response_model=TrapResult)
async def evaluate_honeypot(payload: SessionPayload, request: Request):
    """Check invisible trap fields and submit speed for a session."""
    return state.orchestrator.evaluate_honeypot(payload.session_id, request_context(request))


@app.post("/evaluate", response_model=TrustAssessment)
async def evaluate(payload: AssessPayload, request: Request):
    """
    Assess session trust and produce an access-control recommendation.

    Returns allow, challenge or block with the contributing signals.
    """
    context = request_context(request)
    enforce_rate_limit(context["identifier"], "api", context)

    try:
        return state.orchestrator.assess_trust(payload.session_id, payload.probes, context)
    except Exception as e:
        logger.error(f"Evaluate error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error during evaluation"
        )


# =============================================================================
# Lockout & Rate Limit Gates
# =============================================================================

@app.post("/lockout/check")
async def check_lockout(payload: IdentifierPayload, request: Request):
    """Lockout status; 423 while locked."""
    identifier = payload.identifier or request_context(request)["identifier"]
    lockout = state.orchestrator.check_lockout(identifier)
    code = status.HTTP_423_LOCKED if lockout.locked else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=lockout.model_dump(by_alias=True))


@app.post("/lockout/attempt", dependencies=service_only)
async def record_attempt(payload: AttemptPayload, request: Request):
    """Record an authentication outcome; 423 when the identifier is locked."""
    context = request_context(request)
    identifier = payload.identifier or context["identifier"]
    lockout = state.orchestrator.record_attempt(identifier, payload.success, context)
    code = status.HTTP_423_LOCKED if lockout.locked else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=lockout.model_dump(by_alias=True))


@app.post("/rate-limit/check")
async def check_rate_limit(payload: RateLimitPayload, request: Request):
    """Count one request against a policy; 429 when exceeded."""
    context = request_context(request)
    identifier = payload.identifier or context["identifier"]
    try:
        decision = state.orchestrator.check_rate_limit(identifier, payload.policy, context)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    code = status.HTTP_200_OK if decision.allowed else status.HTTP_429_TOO_MANY_REQUESTS
    return JSONResponse(
        status_code=code,
        content=decision.model_dump(by_alias=True),
        headers=rate_limit_headers(decision),
    )


@app.post("/inspect", response_model=InjectionReport)
async def inspect_input(payload: InspectPayload, request: Request):
    """Scan request data for injection; 403 when blocked."""
    context = request_context(request)
    identifier = payload.identifier or context["identifier"]
    report = state.orchestrator.inspect_input(payload.value, identifier, context)

    code = (
        status.HTTP_403_FORBIDDEN
        if report.blocked or report.identifier_blocked
        else status.HTTP_200_OK
    )
    return JSONResponse(status_code=code, content=report.model_dump(mode="json", by_alias=True))


# =============================================================================
# Tokens
# =============================================================================

@app.post("/tokens/issue", response_model=TokenPair, dependencies=service_only)
async def issue_tokens(claims: TokenClaims):
    """Issue a fingerprint-bound token pair for an authenticated identity."""
    return state.orchestrator.issue_token_pair(claims)


@app.post("/tokens/refresh", response_model=TokenPair)
async def refresh_tokens(payload: RefreshPayload, request: Request):
    """Rotate a refresh token; 401 for any failure."""
    context = request_context(request)
    enforce_rate_limit(context["identifier"], "refresh", context)

    pair = state.orchestrator.refresh_token_pair(payload.refresh_token, payload.fingerprint_id, context)
    if pair is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    return pair


@app.post("/tokens/verify", response_model=TokenVerification)
async def verify_token(payload: TokenPayload):
    """Verify an access token; 401 when invalid."""
    verification = state.orchestrator.verify_access_token(payload.token)
    if not verification.valid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return verification


@app.post("/tokens/revoke")
async def revoke_token(payload: TokenPayload):
    """Revoke one access or refresh token."""
    return {"revoked": state.orchestrator.revoke_token(payload.token)}


@app.post("/tokens/revoke-user", dependencies=service_only)
async def revoke_user_tokens(payload: RevokeUserPayload):
    """Revoke every refresh token of a user."""
    return {"revoked": state.orchestrator.revoke_all_for_user(payload.user_id)}


@app.post("/sessions/end", dependencies=service_only)
async def end_session(payload: SessionPayload):
    """Revoke a session's tokens and discard its telemetry."""
    return {"revoked": state.orchestrator.revoke_session(payload.session_id)}


# =============================================================================
# Security Events
# =============================================================================

@app.get("/security-events", response_model=List[SecurityEvent], dependencies=service_only)
async def list_security_events(
    type: Optional[EventType] = None,
    severity: Optional[Severity] = None,
    since: Optional[float] = None,
    until: Optional[float] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Security events, newest first."""
    return state.orchestrator.query_events(
        event_type=type, severity=severity, since=since, until=until,
        limit=limit, offset=offset,
    )


@app.get("/security-events/stats", response_model=EventStatistics, dependencies=service_only)
async def security_event_stats():
    """Totals by type and severity plus recent events."""
    return state.orchestrator.event_statistics()


# =============================================================================
# Decoy Endpoints
# =============================================================================

def _decoy_handler(path: str):
    async def decoy(request: Request):
        return state.orchestrator.trigger_decoy(path, request_context(request))
    return decoy


for _path in DECOY_ENDPOINTS:
    app.add_api_route(
        _path, _decoy_handler(_path), methods=["GET", "POST"], include_in_schema=False
    )


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
