"""Pydantic models for the Identity Authenticity Verification API."""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from .domain import CheckStatus, CheckType, LivenessState, RecurrentTrigger, RiskLevel


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class StartLivenessRequest(BaseModel):
    user_id: str
    reason: str = "onboarding"


class SubmitVideoRequest(BaseModel):
    video_ref: str = Field(..., min_length=1)
    duration_seconds: float


class PhotoConsistencyRequest(BaseModel):
    user_id: str
    photo_refs: list[str]
    new_photo_ref: Optional[str] = None
    reason: str = "profile_photo_review"


class RecurrentAuthenticityRequest(BaseModel):
    user_id: str
    old_photo_refs: list[str]
    new_photo_refs: list[str]
    trigger: RecurrentTrigger


class StolenPhotoRequest(BaseModel):
    user_id: str
    photo_ref: str = Field(..., min_length=1)
    reason: str = "photo_upload"


class DeepfakeRequest(BaseModel):
    user_id: str
    media_ref: str = Field(..., min_length=1)
    reason: str = "media_upload"


class VoiceEnrollRequest(BaseModel):
    user_id: str
    audio_ref: str = Field(..., min_length=1)
    duration_seconds: float


class VoiceVerifyRequest(BaseModel):
    user_id: str
    audio_ref: str = Field(..., min_length=1)
    reason: str = "voice_verification"


class SocialGraphRequest(BaseModel):
    target_user_id: str = Field(..., min_length=1)
    phone_number: Optional[str] = None
    device_fingerprint: Optional[str] = None
    payout_account_id: Optional[str] = None
    card_fingerprint: Optional[str] = None
    ip_address: Optional[str] = None
    interaction_cluster_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class CheckResponse(BaseModel):
    check_id: str
    check_type: CheckType
    status: CheckStatus
    passed: bool
    confidence: float
    flags: list[str] = []
    completed_at: datetime


class LivenessSessionResponse(BaseModel):
    session_id: str
    user_id: str
    state: LivenessState
    movements_detected: int = 0
    check: Optional[CheckResponse] = None


class PhotoConsistencyResponse(CheckResponse):
    photo_count: int


class RecurrentAuthenticityResponse(CheckResponse):
    trigger: RecurrentTrigger
    identity_swap_detected: bool = False
    requires_reverification: bool = False
    blocks_uploads: bool = False


class StolenPhotoResponse(CheckResponse):
    stolen_photo_detected: bool = False
    celebrity_match: bool = False
    stock_photo_match: bool = False
    adult_content_match: bool = False


class DeepfakeResponse(CheckResponse):
    is_deepfake: bool = False
    high_confidence: bool = False


class VoiceEnrollResponse(BaseModel):
    signature_id: str
    user_id: str
    created_at: datetime


class VoiceVerifyResponse(CheckResponse):
    voice_match: bool = False
    spoofing_detected: bool = False


class SocialGraphResponse(BaseModel):
    analysis_id: str
    user_id: str
    risk_level: RiskLevel
    flags: list[str] = []
    repeated_catfish_pattern: bool = False
    coordinated_accounts: bool = False
    mass_registration_pattern: bool = False
    linked_accounts: dict[str, list[str]] = {}
    case_id: Optional[str] = None


class NeedsVerificationResponse(BaseModel):
    user_id: str
    check_type: CheckType
    needs_verification: bool


class RecentChecksResponse(BaseModel):
    user_id: str
    checks: list[CheckResponse]


class ErrorResponse(BaseModel):
    error: str
    error_code: str
    message: str
