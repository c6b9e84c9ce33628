"""
Security configuration and dashboard for the code redemption pipeline
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from datetime import timedelta
from typing import Dict, Any, List
import logging

from core.config import settings
from core.database import transaction_scope, utcnow, as_utc
from core.exceptions import ValidationException
from models.security import (
    SecurityConfiguration,
    CodeRedemptionRateLimit,
    FraudDetectionLog,
)
from models.unlock_codes import UnlockCode, CodeRedemptionLog
from schemas.security import SecurityConfig, SecurityConfigUpdate, SecurityDashboard

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = (
    "device_change_limit",
    "max_redemption_attempts",
    "rate_limit_window_hours",
    "suspicious_attempt_threshold",
    "auto_block_duration",
)


def default_security_config() -> SecurityConfig:
    return SecurityConfig(
        device_locking_enabled=settings.DEFAULT_DEVICE_LOCKING_ENABLED,
        ip_locking_enabled=settings.DEFAULT_IP_LOCKING_ENABLED,
        allow_device_change=settings.DEFAULT_ALLOW_DEVICE_CHANGE,
        device_change_limit=settings.DEFAULT_DEVICE_CHANGE_LIMIT,
        max_redemption_attempts=settings.DEFAULT_MAX_REDEMPTION_ATTEMPTS,
        rate_limit_window_hours=settings.DEFAULT_RATE_LIMIT_WINDOW_HOURS,
        fraud_detection_enabled=settings.DEFAULT_FRAUD_DETECTION_ENABLED,
        suspicious_attempt_threshold=settings.DEFAULT_SUSPICIOUS_ATTEMPT_THRESHOLD,
        block_suspicious_ips=settings.DEFAULT_BLOCK_SUSPICIOUS_IPS,
        auto_block_duration=settings.DEFAULT_AUTO_BLOCK_DURATION_HOURS,
    )


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


class SecurityConfigService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self):
        result = await self.db.execute(
            select(SecurityConfiguration).order_by(SecurityConfiguration.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_security_configuration(self) -> SecurityConfig:
        """The saved policy, or the defaults from settings when none was saved."""
        row = await self._get_row()
        if not row:
            return default_security_config()
        return SecurityConfig.model_validate(row)

    async def update_security_configuration(self, update_data: SecurityConfigUpdate, admin_id: str) -> SecurityConfig:
        invalid = {
            field: "must be at least 1"
            for field in NUMERIC_FIELDS
            if getattr(update_data, field) < 1
        }
        if invalid:
            raise ValidationException(message="Numeric values must be positive", errors=invalid)

        async with transaction_scope(self.db):
            row = await self._get_row()
            if not row:
                row = SecurityConfiguration()
                self.db.add(row)
            for field, value in update_data.model_dump().items():
                setattr(row, field, value)
            row.updated_by = str(admin_id)
            await self.db.flush()

        logger.info(f"Security configuration updated by {admin_id}")
        return SecurityConfig.model_validate(row)

    async def _count(self, model, *criteria) -> int:
        result = await self.db.execute(select(func.count(model.id)).where(*criteria))
        return result.scalar() or 0

    async def get_security_dashboard(self) -> SecurityDashboard:
        now = utcnow()
        last_24h = now - timedelta(hours=24)
        last_7d = now - timedelta(days=7)
        last_30d = now - timedelta(days=30)

        total_fraud_logs = await self._count(FraudDetectionLog)
        fraud_logs = {
            "total": total_fraud_logs,
            "unresolved": await self._count(FraudDetectionLog, FraudDetectionLog.resolved == False),
            "last_24h": await self._count(FraudDetectionLog, FraudDetectionLog.flagged_at >= last_24h),
            "last_7d": await self._count(FraudDetectionLog, FraudDetectionLog.flagged_at >= last_7d),
            "last_30d": await self._count(FraudDetectionLog, FraudDetectionLog.flagged_at >= last_30d),
        }

        total_attempts = await self._count(CodeRedemptionLog)
        failed_attempts = await self._count(CodeRedemptionLog, CodeRedemptionLog.success == False)
        redemptions = {
            "total": total_attempts,
            "failed": failed_attempts,
            "success_rate": _percent(total_attempts - failed_attempts, total_attempts),
            "fraud_detection_rate": _percent(total_fraud_logs, total_attempts),
        }

        reason_count = func.count(FraudDetectionLog.id).label("count")
        top_reasons = await self.db.execute(
            select(FraudDetectionLog.detection_reason, reason_count)
            .group_by(FraudDetectionLog.detection_reason)
            .order_by(reason_count.desc())
            .limit(5)
        )

        recent = await self.db.execute(
            select(FraudDetectionLog.flagged_at)
            .where(FraudDetectionLog.flagged_at >= last_7d)
            .order_by(FraudDetectionLog.flagged_at)
        )
        by_day: Dict[str, int] = {}
        for (flagged_at,) in recent.all():
            day = as_utc(flagged_at).date().isoformat()
            by_day[day] = by_day.get(day, 0) + 1
        fraud_logs_by_day: List[Dict[str, Any]] = [
            {"date": day, "count": count} for day, count in by_day.items()
        ]

        return SecurityDashboard(
            fraud_logs=fraud_logs,
            redemptions=redemptions,
            blocked_identifiers=await self._count(
                CodeRedemptionRateLimit, CodeRedemptionRateLimit.blocked == True),
            device_locked_codes=await self._count(UnlockCode, UnlockCode.device_locked_to.is_not(None)),
            ip_locked_codes=await self._count(UnlockCode, UnlockCode.ip_locked_to.is_not(None)),
            top_fraud_reasons=[
                {"reason": reason, "count": count} for reason, count in top_reasons.all()
            ],
            fraud_logs_by_day=fraud_logs_by_day,
            configuration=await self.get_security_configuration(),
        )
