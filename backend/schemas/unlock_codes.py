from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from uuid import UUID


class CodeValidationRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)


class CodeRedemptionRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)
    device_fingerprint: Optional[str] = Field(None, max_length=255)


class ReleaseSummary(BaseModel):
    id: UUID
    title: str
    artist: str
    cover_art: str
    release_type: str
    track_count: int


class ValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    code: Optional[str] = None
    release: Optional[ReleaseSummary] = None
    already_owned: bool = False


class AlbumInfo(BaseModel):
    title: str
    artist: str
    cover: str
    track_count: int


class RedemptionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    album: Optional[AlbumInfo] = None


class RedemptionStats(BaseModel):
    total_redemptions: int
    successful_redemptions: int
    failed_redemptions: int
    recent_redemptions: List[Dict[str, Any]] = Field(default_factory=list)
