from __future__ import annotations

from typing import ClassVar, Literal, final

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


StorageBackendName = Literal["auto", "local", "s3", "supabase"]


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Garage Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./.data/dev.db"

    cors_allow_origins: str = "*"

    # Object storage
    # auto: S3 when fully configured, otherwise the local directory backend.
    storage_backend: StorageBackendName = "auto"
    # {baseUrl} of the public URL convention: {baseUrl}/storage/v1/object/public/{path}
    storage_public_base_url: str = "http://localhost:8000"

    # Attachments
    attachments_local_dir: str = ".data/objects"
    attachments_max_size_bytes: int = 25 * 1024 * 1024
    # Upper bound on concurrent uploads when staging several files at once.
    attachments_upload_concurrency: int = 4

    # S3 compatible storage
    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    # Supabase storage REST API
    supabase_url: str = ""
    supabase_service_key: str = ""
    supabase_request_timeout_seconds: float = 15.0

    log_level: str = "INFO"

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if not self.storage_public_base_url.strip():
            errors.append("STORAGE_PUBLIC_BASE_URL must be set in production")

        # If any S3 setting is provided, require the full set to avoid silently falling back to local storage.
        s3_fields = {
            "S3_BUCKET": self.s3_bucket.strip(),
            "S3_ENDPOINT_URL": self.s3_endpoint_url.strip(),
            "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
        }
        if any(v for v in s3_fields.values()) and any(not v for v in s3_fields.values()):
            missing = ",".join([k for k, v in s3_fields.items() if not v])
            errors.append(f"S3 config incomplete in production; missing: {missing}")

        if self.storage_backend == "supabase" and (
            not self.supabase_url.strip() or not self.supabase_service_key.strip()
        ):
            errors.append("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for supabase storage")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def s3_configured(self) -> bool:
        return bool(
            self.s3_bucket.strip()
            and self.s3_endpoint_url.strip()
            and self.s3_access_key_id.strip()
            and self.s3_secret_access_key.strip()
        )

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if self.attachments_upload_concurrency <= 0:
            warnings.append("ATTACHMENTS_UPLOAD_CONCURRENCY<=0 disables the upload concurrency cap")
        if self.attachments_max_size_bytes <= 0:
            warnings.append("ATTACHMENTS_MAX_SIZE_BYTES<=0 disables the attachment size limit")
        return warnings


settings = Settings()
