from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_NEGATIVE_PROMPT = (
    "ugly, deformed, noisy, blurry, distorted, out of focus, bad anatomy, extra limbs, "
    "poorly drawn face, poorly drawn hands, missing fingers"
)


class GenerationParameters(BaseModel):
    """Fixed image parameters sent with every generation request."""

    width: int = Field(default=1024, gt=0)
    height: int = Field(default=1024, gt=0)
    num_images: int = Field(default=1, ge=1)
    sampler: int = 9
    cfg_scale: float = 3
    guidance_scale: float = 3
    strength: float = 1.7
    steps: int = Field(default=30, ge=1)
    high_noise_frac: float = 1
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT
    hide: bool = False
    is_private: bool = False
    batch_id: str = "0yU1CQbVkr"
    generate_variants: bool = False
    init_image_from_playground: bool = False


class Settings(BaseSettings):
    """Runtime configuration for the image relay."""

    #----------------------------------------------------------
    # Generation backend
    #----------------------------------------------------------
    backend_url: str = Field(
        default="https://playground.com/api/models",
        description="HTTPS endpoint accepting generation requests.",
    )
    backend_cookies: SecretStr = Field(
        default=SecretStr(""),
        description="Cookie header sent to authenticate with the generation backend.",
    )
    status_uuid: str = Field(
        default="",
        description="Status/session identifier included in every generation payload.",
    )
    model_type: str = Field(
        default="stable-diffusion-xl",
        description="Model selector forwarded to the generation backend.",
    )
    image_url_template: str = Field(
        default="https://storage.googleapis.com/pai-images/{image_key}.jpeg",
        description="Where generated images are served from, keyed by image key.",
    )
    generation: GenerationParameters = Field(default_factory=GenerationParameters)
    http_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout applied to every outbound HTTP call.",
    )

    #----------------------------------------------------------
    # Upload destination
    #----------------------------------------------------------
    upload_provider: Literal["s3", "imgbb"] = Field(
        default="s3",
        description="Where generated images are re-uploaded.",
    )
    s3_bucket: str = Field(default="", description="Bucket receiving uploaded images.")
    s3_endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible storage (R2, MinIO, GCS interop).",
    )
    s3_region: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[SecretStr] = None
    upload_public_base_url: Optional[str] = Field(
        default=None,
        description="Public URL prefix for uploaded objects. Derived from the bucket when unset.",
    )
    imgbb_api_url: str = Field(default="https://api.imgbb.com/1/upload")
    imgbb_api_key: SecretStr = Field(default=SecretStr(""))

    #----------------------------------------------------------
    # Quota ledger
    #----------------------------------------------------------
    database_path: str = Field(
        default="imagerelay.db",
        description="Path of the sqlite database holding quota records.",
    )
    storage_busy_timeout_seconds: float = Field(default=5.0, gt=0)
    daily_request_limit: int = Field(
        default=3,
        ge=0,
        description="Admitted requests per 24 hours for free-tier clients.",
    )
    quota_retention_days: int = Field(
        default=30,
        ge=1,
        description="Free-tier quota records idle for longer than this are purged on startup.",
    )

    #----------------------------------------------------------
    # Server
    #----------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(
        env_prefix="IMAGERELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        protected_namespaces=(),
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
