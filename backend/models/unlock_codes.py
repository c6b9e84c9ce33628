"""
Unlock codes printed on physical releases and their redemption audit trail
"""
from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from core.database import BaseModel, GUID, CHAR_LENGTH
from typing import Dict, Any

CODE_STATUS_UNUSED = "unused"
CODE_STATUS_REDEEMED = "redeemed"


class UnlockCode(BaseModel):
    __tablename__ = "unlock_codes"
    __table_args__ = (
        Index('idx_unlock_codes_release_status', 'release_id', 'status'),
        {'extend_existing': True}
    )

    code = Column(String(10), unique=True, nullable=False, index=True)
    status = Column(String(20), default=CODE_STATUS_UNUSED, nullable=False)
    release_id = Column(GUID(), ForeignKey("releases.id"), nullable=False)
    redeemed_by = Column(GUID(), ForeignKey("users.id"), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    device_locked_to = Column(String(CHAR_LENGTH), nullable=True)
    ip_locked_to = Column(String(64), nullable=True)

    release = relationship("Release", lazy="selectin")


class CodeRedemptionLog(BaseModel):
    """Append-only row per redemption attempt against an existing code"""
    __tablename__ = "code_redemption_logs"
    __table_args__ = (
        Index('idx_code_redemption_logs_user', 'user_id', 'redeemed_at'),
        Index('idx_code_redemption_logs_success', 'success'),
        {'extend_existing': True}
    )

    code_id = Column(GUID(), ForeignKey("unlock_codes.id"), nullable=False)
    user_id = Column(GUID(), ForeignKey("users.id"), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(CHAR_LENGTH), nullable=True)
    success = Column(Boolean, nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=False)

    unlock_code = relationship("UnlockCode", lazy="selectin")

    def to_dict(self) -> Dict[str, Any]:
        release = self.unlock_code.release if self.unlock_code else None
        return {
            "id": str(self.id),
            "code": self.unlock_code.code if self.unlock_code else None,
            "release_title": release.title if release else None,
            "success": self.success,
            "ip_address": self.ip_address,
            "device_fingerprint": self.device_fingerprint,
            "redeemed_at": self.redeemed_at.isoformat() if self.redeemed_at else None,
        }
