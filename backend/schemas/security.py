from pydantic import BaseModel, Field, ConfigDict, StrictBool
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID


class SecurityConfig(BaseModel):
    """Redemption security policy, loaded once per redemption"""
    model_config = ConfigDict(from_attributes=True)

    device_locking_enabled: bool
    ip_locking_enabled: bool
    allow_device_change: bool
    device_change_limit: int
    max_redemption_attempts: int
    rate_limit_window_hours: int
    fraud_detection_enabled: bool
    suspicious_attempt_threshold: int
    block_suspicious_ips: bool
    auto_block_duration: int  # hours


class SecurityConfigUpdate(BaseModel):
    """Full replacement of the policy; numeric bounds are checked by the service"""
    device_locking_enabled: StrictBool
    ip_locking_enabled: StrictBool
    allow_device_change: StrictBool
    device_change_limit: int
    max_redemption_attempts: int
    rate_limit_window_hours: int
    fraud_detection_enabled: StrictBool
    suspicious_attempt_threshold: int
    block_suspicious_ips: StrictBool
    auto_block_duration: int


class RateLimitStatus(BaseModel):
    identifier: str
    identifier_type: str
    blocked: bool
    attempt_count: int = 0
    window_started_at: Optional[datetime] = None


class RedemptionAttempt(BaseModel):
    """One redemption attempt as seen by fraud detection"""
    user_id: UUID
    code: str
    success: bool
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    user_agent: Optional[str] = None


class FraudAssessment(BaseModel):
    flagged: bool = False
    blocked: bool = False
    reasons: List[str] = Field(default_factory=list)


class FraudLogResolution(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class SecurityDashboard(BaseModel):
    fraud_logs: Dict[str, int]
    redemptions: Dict[str, Any]
    blocked_identifiers: int
    device_locked_codes: int
    ip_locked_codes: int
    top_fraud_reasons: List[Dict[str, Any]]
    fraud_logs_by_day: List[Dict[str, Any]]
    configuration: SecurityConfig
