"""Configuration schema for a mirrored folder."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceAccountCredentials(BaseModel):
    """Service account identity used to obtain Drive access tokens."""

    model_config = ConfigDict(frozen=True)

    client_email: str = Field(..., description="Service account client email")
    private_key: str = Field(..., repr=False, description="PEM encoded private key")

    @field_validator('client_email')
    @classmethod
    def validate_client_email(cls, v):
        v = v.strip()
        if not v or "@" not in v:
            raise ValueError("client_email must be a service account email address")
        return v

    @field_validator('private_key')
    @classmethod
    def validate_private_key(cls, v):
        if not v.strip():
            raise ValueError("private_key must not be empty")
        return v


class MirrorConfig(BaseModel):
    """Everything one reconciliation pass needs to know.

    Instances are immutable; the reconciler takes one snapshot per pass so
    edits made while a pass is running only apply to the next one.
    """

    model_config = ConfigDict(frozen=True)

    credentials: ServiceAccountCredentials
    target_folder_id: str = Field(..., description="Drive folder the local files are mirrored into")
    local_directory: Path = Field(..., description="Directory whose files are mirrored")
    file_extension: str = Field(default="md", description="Extension of files to mirror, without the dot")

    max_concurrent_uploads: int = Field(default=1, description="Upper bound on parallel upserts")
    folder_scoped_lookup: bool = Field(
        default=True,
        description="Restrict name lookups during upsert to the target folder"
    )
    request_timeout_seconds: float = Field(default=60.0, description="Timeout for each remote call")
    mime_type: Optional[str] = Field(None, description="MIME type override for uploaded files")

    @field_validator('target_folder_id')
    @classmethod
    def validate_target_folder_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("target_folder_id must not be empty")
        return v

    @field_validator('local_directory')
    @classmethod
    def expand_local_directory(cls, v):
        return Path(v).expanduser()

    @field_validator('file_extension')
    @classmethod
    def validate_file_extension(cls, v):
        v = v.strip().lstrip(".")
        if not v:
            raise ValueError("file_extension must not be empty")
        return v

    @field_validator('max_concurrent_uploads')
    @classmethod
    def validate_max_concurrent_uploads(cls, v):
        if v < 1:
            raise ValueError("Must allow at least 1 concurrent upload")
        return v

    @field_validator('request_timeout_seconds')
    @classmethod
    def validate_request_timeout(cls, v):
        if v <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        return v
