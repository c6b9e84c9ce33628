"""
Redemption security models: admin configuration, rate-limit windows,
suspicious activity counters and fraud detection log
"""
from sqlalchemy import Column, String, Boolean, DateTime, Float, Text, Integer, Index, UniqueConstraint
from core.database import BaseModel, GUID, CHAR_LENGTH
from typing import Dict, Any

IDENTIFIER_IP = "ip"
IDENTIFIER_USER = "user"
IDENTIFIER_DEVICE = "device"


class SecurityConfiguration(BaseModel):
    """Singleton row holding the redemption security policy"""
    __tablename__ = "security_configurations"
    __table_args__ = {'extend_existing': True}

    device_locking_enabled = Column(Boolean, default=False, nullable=False)
    ip_locking_enabled = Column(Boolean, default=False, nullable=False)
    allow_device_change = Column(Boolean, default=True, nullable=False)
    device_change_limit = Column(Integer, default=3, nullable=False)
    max_redemption_attempts = Column(Integer, default=5, nullable=False)
    rate_limit_window_hours = Column(Integer, default=1, nullable=False)
    fraud_detection_enabled = Column(Boolean, default=True, nullable=False)
    suspicious_attempt_threshold = Column(Integer, default=10, nullable=False)
    block_suspicious_ips = Column(Boolean, default=True, nullable=False)
    auto_block_duration = Column(Integer, default=24, nullable=False)  # hours
    updated_by = Column(String(100), nullable=True)


class CodeRedemptionRateLimit(BaseModel):
    __tablename__ = "code_redemption_rate_limits"
    __table_args__ = (
        UniqueConstraint('identifier', 'identifier_type', name='uq_rate_limit_identifier'),
        Index('idx_rate_limit_blocked', 'blocked'),
        {'extend_existing': True}
    )

    identifier = Column(String(CHAR_LENGTH), nullable=False)
    identifier_type = Column(String(10), nullable=False)  # ip, user, device
    attempt_count = Column(Integer, default=0, nullable=False)
    window_started_at = Column(DateTime(timezone=True), nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=False)
    blocked = Column(Boolean, default=False, nullable=False)


class SuspiciousActivity(BaseModel):
    """Per-identifier failure and success counters feeding fraud scoring"""
    __tablename__ = "suspicious_activities"
    __table_args__ = (
        UniqueConstraint('identifier', 'identifier_type', name='uq_suspicious_activity_identifier'),
        {'extend_existing': True}
    )

    identifier = Column(String(CHAR_LENGTH), nullable=False)
    identifier_type = Column(String(10), nullable=False)
    failed_attempts = Column(Integer, default=0, nullable=False)
    successful_attempts = Column(Integer, default=0, nullable=False)
    window_started_at = Column(DateTime(timezone=True), nullable=False)
    last_failed_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)


class FraudDetectionLog(BaseModel):
    __tablename__ = "fraud_detection_logs"
    __table_args__ = (
        Index('idx_fraud_logs_identifier', 'identifier', 'identifier_type'),
        Index('idx_fraud_logs_resolved_blocked', 'resolved', 'blocked_until'),
        {'extend_existing': True}
    )

    identifier = Column(String(CHAR_LENGTH), nullable=False)
    identifier_type = Column(String(10), nullable=False)
    user_id = Column(GUID(), nullable=True)
    code = Column(String(10), nullable=True)
    detection_reason = Column(String(100), nullable=False)
    risk_score = Column(Float, nullable=False, default=0.0)
    flagged_at = Column(DateTime(timezone=True), nullable=False)
    blocked_until = Column(DateTime(timezone=True), nullable=True)
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "identifier": self.identifier,
            "identifier_type": self.identifier_type,
            "user_id": str(self.user_id) if self.user_id else None,
            "code": self.code,
            "detection_reason": self.detection_reason,
            "risk_score": self.risk_score,
            "flagged_at": self.flagged_at.isoformat() if self.flagged_at else None,
            "blocked_until": self.blocked_until.isoformat() if self.blocked_until else None,
            "resolved": self.resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
        }
