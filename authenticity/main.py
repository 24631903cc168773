"""
Identity Authenticity Verification Pipeline: FastAPI Application.
Liveness, photo consistency, stolen-content and deepfake detection,
voice signatures and social-graph fraud analysis.

Run locally:   uvicorn authenticity.main:app --reload --port 8002
"""

import logging
from dataclasses import dataclass
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import NotFound, OwnershipViolation, VerificationError
from .models.domain import CheckType, IdentityCheck, LivenessSession
from .models.schemas import (
    CheckResponse, DeepfakeRequest, DeepfakeResponse, ErrorResponse, LivenessSessionResponse,
    NeedsVerificationResponse, PhotoConsistencyRequest, PhotoConsistencyResponse,
    RecentChecksResponse, RecurrentAuthenticityRequest, RecurrentAuthenticityResponse,
    SocialGraphRequest, SocialGraphResponse, StartLivenessRequest, StolenPhotoRequest,
    StolenPhotoResponse, SubmitVideoRequest, VoiceEnrollRequest, VoiceEnrollResponse,
    VoiceVerifyRequest, VoiceVerifyResponse,
)
from .pipeline import Pipeline, get_pipeline
from .services.social_graph import AccountAttributes

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-8s | %(message)s")
logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

ERROR_RESPONSES = {
    code: {"model": ErrorResponse} for code in (400, 403, 404, 409, 422, 429)
}

app = FastAPI(
    title="Identity Authenticity Verification Pipeline",
    description=(
        "Trust-and-safety verification for a dating platform. "
        "Liveness, photo consistency, stolen-photo and deepfake detection, "
        "voice signatures and social-graph fraud analysis."
    ),
    version="1.0.0",
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_caller(
    x_user_id: str | None = Header(None),
    x_user_role: str = Header("user"),
) -> Caller:
    """Acting identity as asserted by the API gateway."""
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    return Caller(user_id=x_user_id, role=x_user_role.lower())


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(403, "Admin role required")
    return caller


def _ensure_owner(caller: Caller, user_id: str):
    if caller.user_id != user_id:
        raise OwnershipViolation("Callers may only run checks on their own account")


@app.exception_handler(VerificationError)
async def verification_error_handler(request: Request, exc: VerificationError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__, error_code=exc.error_code, message=exc.message,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="InvalidInput", error_code="INVALID_INPUT", message=str(exc.errors()),
        ).model_dump(),
    )


def _check_fields(check: IdentityCheck) -> dict:
    return dict(
        check_id=check.check_id,
        check_type=check.check_type,
        status=check.status,
        passed=check.passed,
        confidence=round(check.confidence, 4),
        flags=sorted(check.flags),
        completed_at=check.completed_at,
    )


async def _session_response(pipeline: Pipeline, session: LivenessSession) -> LivenessSessionResponse:
    check = await pipeline.ledger.get(session.check_id) if session.check_id else None
    return LivenessSessionResponse(
        session_id=session.session_id,
        user_id=session.user_id,
        state=session.state,
        movements_detected=session.movements_detected,
        check=CheckResponse(**_check_fields(check)) if check else None,
    )


@app.post("/api/v1/liveness/sessions", response_model=LivenessSessionResponse, status_code=201, responses=ERROR_RESPONSES)
async def start_liveness(
    body: StartLivenessRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Open a liveness session for the caller."""
    _ensure_owner(caller, body.user_id)
    session = await pipeline.liveness.start_session(body.user_id, body.reason)
    return await _session_response(pipeline, session)


@app.post("/api/v1/liveness/sessions/{session_id}/video", response_model=LivenessSessionResponse, responses=ERROR_RESPONSES)
async def submit_liveness_video(
    session_id: str,
    body: SubmitVideoRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Submit the recorded video and run the liveness analysis.
    Micro-movements and synthetic-texture artifacts are scored concurrently.
    """
    session = await pipeline.liveness.get_session(session_id)
    _ensure_owner(caller, session.user_id)
    session = await pipeline.liveness.submit_video(session_id, body.video_ref, body.duration_seconds)
    return await _session_response(pipeline, session)


@app.get("/api/v1/liveness/sessions/{session_id}", response_model=LivenessSessionResponse, responses=ERROR_RESPONSES)
async def get_liveness_session(
    session_id: str,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    session = await pipeline.liveness.get_session(session_id)
    if not caller.is_admin:
        _ensure_owner(caller, session.user_id)
    return await _session_response(pipeline, session)


@app.post("/api/v1/photos/consistency", response_model=PhotoConsistencyResponse, responses=ERROR_RESPONSES)
async def check_photo_consistency(
    body: PhotoConsistencyRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Compare every pair of profile photos and measure filter, beauty-AI and morph intensity."""
    _ensure_owner(caller, body.user_id)
    check = await pipeline.photos.check_consistency(
        body.user_id, body.photo_refs, new_photo_ref=body.new_photo_ref, reason=body.reason,
    )
    return PhotoConsistencyResponse(**_check_fields(check), photo_count=len(check.evidence.photo_refs))


@app.post("/api/v1/photos/recurrent", response_model=RecurrentAuthenticityResponse, responses=ERROR_RESPONSES)
async def check_recurrent_authenticity(
    body: RecurrentAuthenticityRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Compare the previously verified photo set with a new one to catch identity swaps."""
    _ensure_owner(caller, body.user_id)
    check = await pipeline.photos.check_recurrent(
        body.user_id, body.old_photo_refs, body.new_photo_refs, body.trigger,
    )
    result = check.evidence
    return RecurrentAuthenticityResponse(
        **_check_fields(check),
        trigger=result.trigger,
        identity_swap_detected=result.identity_swap_detected,
        requires_reverification=result.requires_reverification,
        blocks_uploads=result.blocks_uploads,
    )


@app.post("/api/v1/content/stolen", response_model=StolenPhotoResponse, responses=ERROR_RESPONSES)
async def check_stolen_photo(
    body: StolenPhotoRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Look a photo up in the celebrity, stock and adult reference sets."""
    _ensure_owner(caller, body.user_id)
    check = await pipeline.content.check_stolen_photo(body.user_id, body.photo_ref, body.reason)
    result = check.evidence
    return StolenPhotoResponse(
        **_check_fields(check),
        stolen_photo_detected=result.stolen_photo_detected,
        celebrity_match=result.celebrity_match,
        stock_photo_match=result.stock_photo_match,
        adult_content_match=result.adult_content_match,
    )


@app.post("/api/v1/content/deepfake", response_model=DeepfakeResponse, responses=ERROR_RESPONSES)
async def detect_deepfake(
    body: DeepfakeRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Score six synthetic-media artifacts on a photo or video."""
    _ensure_owner(caller, body.user_id)
    check = await pipeline.content.detect_deepfake(body.user_id, body.media_ref, body.reason)
    result = check.evidence
    return DeepfakeResponse(
        **_check_fields(check),
        is_deepfake=result.is_deepfake,
        high_confidence=result.high_confidence,
    )


@app.post("/api/v1/voice/enroll", response_model=VoiceEnrollResponse, status_code=201, responses=ERROR_RESPONSES)
async def enroll_voice(
    body: VoiceEnrollRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Enroll a new voice signature generation from a calibration sample."""
    _ensure_owner(caller, body.user_id)
    signature = await pipeline.voice.enroll(body.user_id, body.audio_ref, body.duration_seconds)
    return VoiceEnrollResponse(
        signature_id=signature.signature_id,
        user_id=signature.user_id,
        created_at=signature.created_at,
    )


@app.post("/api/v1/voice/verify", response_model=VoiceVerifyResponse, responses=ERROR_RESPONSES)
async def verify_voice(
    body: VoiceVerifyRequest,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Compare a fresh sample with the enrolled signature and run anti-spoofing."""
    _ensure_owner(caller, body.user_id)
    check = await pipeline.voice.verify(body.user_id, body.audio_ref, body.reason)
    result = check.evidence
    return VoiceVerifyResponse(
        **_check_fields(check),
        voice_match=result.voice_match,
        spoofing_detected=result.spoofing_detected,
    )


@app.post("/api/v1/admin/fraud/social-graph", response_model=SocialGraphResponse, responses=ERROR_RESPONSES)
async def analyze_social_graph(
    body: SocialGraphRequest,
    caller: Caller = Depends(require_admin),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Admin-only social-graph fraud analysis of any account.
    Shared phones, devices, payout accounts, cards, IP regions and
    interaction clusters are combined into composite fraud patterns.
    """
    attributes = AccountAttributes(**body.model_dump(exclude={"target_user_id"}))
    analysis = await pipeline.social_graph.analyze(body.target_user_id, attributes, requested_by=caller.user_id)
    case = await pipeline.cases.find_by_analysis(analysis.analysis_id)
    return SocialGraphResponse(
        analysis_id=analysis.analysis_id,
        user_id=analysis.user_id,
        risk_level=analysis.risk_level,
        flags=sorted(analysis.flags),
        repeated_catfish_pattern=analysis.repeated_catfish_pattern,
        coordinated_accounts=analysis.coordinated_accounts,
        mass_registration_pattern=analysis.mass_registration_pattern,
        linked_accounts={s.value: sorted(ids) for s, ids in analysis.clusters.items()},
        case_id=case.case_id if case else None,
    )


@app.get("/api/v1/checks/needs-verification", response_model=NeedsVerificationResponse, responses=ERROR_RESPONSES)
async def needs_verification(
    check_type: CheckType = Query(...),
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Whether the caller lacks an approved check of this type."""
    needed = await pipeline.recorder.needs_verification(caller.user_id, check_type)
    return NeedsVerificationResponse(user_id=caller.user_id, check_type=check_type, needs_verification=needed)


@app.get("/api/v1/checks/recent", response_model=RecentChecksResponse, responses=ERROR_RESPONSES)
async def recent_checks(
    check_type: CheckType | None = Query(None),
    limit: int = Query(10, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    checks = await pipeline.ledger.list_recent(caller.user_id, check_type, limit)
    return RecentChecksResponse(
        user_id=caller.user_id,
        checks=[CheckResponse(**_check_fields(c)) for c in checks],
    )


@app.get("/api/v1/checks/{check_id}", response_model=CheckResponse, responses=ERROR_RESPONSES)
async def get_check(
    check_id: str,
    caller: Caller = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
):
    check = await pipeline.ledger.get(check_id)
    if check is None or (check.user_id != caller.user_id and not caller.is_admin):
        raise NotFound(f"Check not found: {check_id}")
    return CheckResponse(**_check_fields(check))


@app.get("/api/v1/health")
async def health():
    return {"status": "healthy", "service": "Identity Authenticity Verification Pipeline"}


@app.get("/")
async def root():
    return {
        "service": "Identity Authenticity Verification Pipeline",
        "version": "1.0.0",
        "docs": "/docs",
        "endpoints": {
            "liveness_start": "POST /api/v1/liveness/sessions",
            "liveness_video": "POST /api/v1/liveness/sessions/{id}/video",
            "photo_consistency": "POST /api/v1/photos/consistency",
            "photo_recurrent": "POST /api/v1/photos/recurrent",
            "stolen_photo": "POST /api/v1/content/stolen",
            "deepfake": "POST /api/v1/content/deepfake",
            "voice_enroll": "POST /api/v1/voice/enroll",
            "voice_verify": "POST /api/v1/voice/verify",
            "social_graph": "POST /api/v1/admin/fraud/social-graph",
            "needs_verification": "GET /api/v1/checks/needs-verification",
            "recent_checks": "GET /api/v1/checks/recent",
        },
    }
