"""Configuration for the Identity Authenticity Verification Pipeline."""

from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    # Remote model service (movement, artifact, corpus and spoofing detectors)
    detector_service_endpoint: str = Field(default="http://localhost:8100")
    detector_service_api_key: str = Field(default="")
    coordinated_feed_url: str = Field(default="http://localhost:8200")
    risk_profile_store_url: str = Field(default="http://localhost:8300")
    http_timeout_seconds: float = Field(default=10.0)
    # "remote" uses the model service, "opencv" the local still-image heuristics
    artifact_backend: str = Field(default="remote")

    # Media storage
    azure_storage_connection_string: str = Field(default="")
    media_container: str = Field(default="identity-media")
    local_media_dir: str = Field(default="media")

    # Fan-out
    signal_timeout_seconds: float = Field(default=5.0)
    fallback_confidence: float = Field(default=0.25)
    max_attempts_per_day: int = Field(default=3)
    activity_log_retention: int = Field(default=10000)

    # Liveness
    liveness_min_movements: int = Field(default=2)
    liveness_deepfake_block_threshold: float = Field(default=0.5)
    liveness_deepfake_high_threshold: float = Field(default=0.8)
    liveness_gan_sub_threshold: float = Field(default=0.7)
    liveness_floating_sub_threshold: float = Field(default=0.7)
    liveness_min_video_seconds: float = Field(default=3.0)
    liveness_max_video_seconds: float = Field(default=60.0)

    # Photo consistency
    photo_similarity_floor: float = Field(default=0.7)
    photo_filter_ceiling: float = Field(default=0.8)
    photo_beauty_ai_ceiling: float = Field(default=0.7)
    photo_body_morph_ceiling: float = Field(default=0.6)
    photo_identity_swap_floor: float = Field(default=0.5)
    photo_max_profile_photos: int = Field(default=6)

    # Stolen content / deepfake
    deepfake_block_threshold: float = Field(default=0.6)
    deepfake_high_threshold: float = Field(default=0.8)
    deepfake_artifact_sub_threshold: float = Field(default=0.7)

    # Voice signature
    voice_min_calibration_seconds: float = Field(default=5.0)
    voice_similarity_floor: float = Field(default=0.85)

    # Social-graph fraud: relation-count thresholds and per-account risk steps
    fraud_phone_threshold: int = Field(default=2)
    fraud_device_threshold: int = Field(default=2)
    fraud_payout_threshold: int = Field(default=1)
    fraud_card_threshold: int = Field(default=3)
    fraud_ip_region_threshold: int = Field(default=3)
    fraud_interaction_threshold: int = Field(default=3)
    fraud_phone_step: float = Field(default=0.3)
    fraud_device_step: float = Field(default=0.3)
    fraud_payout_step: float = Field(default=0.5)
    fraud_card_step: float = Field(default=0.25)
    fraud_ip_step: float = Field(default=0.2)
    fraud_interaction_step: float = Field(default=0.2)
    fraud_medium_threshold: float = Field(default=0.3)
    fraud_high_threshold: float = Field(default=0.6)
    fraud_critical_threshold: float = Field(default=0.8)

    class Config:
        env_file = ".env"
        env_prefix = "AUTHENTICITY_"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
