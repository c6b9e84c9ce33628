"""
Fraud detection for code redemption
Scores redemption outcomes per IP and device, writes fraud logs and answers
block-list lookups for the redemption pipeline
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func, case, literal
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID, uuid4
import logging

from core.config import settings
from core.database import dialect_insert, transaction_scope, utcnow, as_utc
from core.exceptions import NotFoundException, ConflictException
from core.utils.logging import structured_logger
from models.security import (
    SuspiciousActivity,
    FraudDetectionLog,
    IDENTIFIER_IP,
    IDENTIFIER_DEVICE,
    IDENTIFIER_USER,
)
from models.unlock_codes import CodeRedemptionLog
from schemas.security import SecurityConfig, RedemptionAttempt, FraudAssessment

logger = logging.getLogger(__name__)

REASON_REPEATED_FAILURES = "repeated_failed_redemptions"
REASON_DEVICE_CHANGES = "excessive_device_changes"
REASON_RAPID_FIRE = "rapid_fire_attempts"

RAPID_FIRE_WINDOW = timedelta(minutes=1)
RAPID_FIRE_MAX_ATTEMPTS = 5

RISK_SCORES = {
    REASON_REPEATED_FAILURES: 0.9,
    REASON_RAPID_FIRE: 0.6,
    REASON_DEVICE_CHANGES: 0.5,
}

# Values callers use when an identifier was not supplied
UNKNOWN_IDENTIFIERS = {None, "", "unknown"}


def _known(value: Optional[str]) -> bool:
    return value not in UNKNOWN_IDENTIFIERS


class FraudDetectionService:
    """
    Threshold policy over per-identifier counters.

    Failed attempts accumulate per IP and per device inside an observation
    window; crossing ``suspicious_attempt_threshold`` writes a blocking fraud
    log. Devices are always blocked, IPs only when ``block_suspicious_ips`` is
    set. Device-change and rapid-fire heuristics only flag. Scoring runs inside
    the caller's transaction.
    """

    def __init__(self, db: AsyncSession, config: Optional[SecurityConfig] = None):
        self.db = db
        self.config = config

    async def _get_config(self) -> SecurityConfig:
        if self.config is None:
            from services.security import SecurityConfigService
            self.config = await SecurityConfigService(self.db).get_security_configuration()
        return self.config

    async def is_blocked(self, ip_address: Optional[str], device_fingerprint: Optional[str]) -> bool:
        """True when an unresolved, unexpired block exists for the IP or the device."""
        conditions = []
        if _known(ip_address):
            conditions.append(and_(
                FraudDetectionLog.identifier == ip_address,
                FraudDetectionLog.identifier_type == IDENTIFIER_IP,
            ))
        if _known(device_fingerprint):
            conditions.append(and_(
                FraudDetectionLog.identifier == device_fingerprint,
                FraudDetectionLog.identifier_type == IDENTIFIER_DEVICE,
            ))
        if not conditions:
            return False

        result = await self.db.execute(
            select(func.count(FraudDetectionLog.id)).where(
                and_(
                    or_(*conditions),
                    FraudDetectionLog.resolved == False,
                    FraudDetectionLog.blocked_until.is_not(None),
                    FraudDetectionLog.blocked_until > utcnow(),
                )
            )
        )
        return (result.scalar() or 0) > 0

    async def _record_outcome(
        self, identifier: str, identifier_type: str, success: bool, now: datetime
    ) -> SuspiciousActivity:
        """Atomically count one success or failure inside the observation window."""
        table = SuspiciousActivity.__table__
        window_cutoff = now - timedelta(hours=settings.FRAUD_OBSERVATION_WINDOW_HOURS)
        window_expired = table.c.window_started_at <= window_cutoff

        if success:
            counted, other = table.c.successful_attempts, table.c.failed_attempts
            counted_key, other_key, stamp_key = "successful_attempts", "failed_attempts", "last_success_at"
        else:
            counted, other = table.c.failed_attempts, table.c.successful_attempts
            counted_key, other_key, stamp_key = "failed_attempts", "successful_attempts", "last_failed_at"

        stmt = dialect_insert(self.db, SuspiciousActivity).values(
            id=uuid4(),
            identifier=identifier,
            identifier_type=identifier_type,
            window_started_at=now,
            **{counted_key: 1, other_key: 0, stamp_key: now},
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["identifier", "identifier_type"],
            set_={
                counted_key: case((window_expired, 1), else_=counted + 1),
                other_key: case((window_expired, 0), else_=other),
                "window_started_at": case(
                    (window_expired, literal(now, table.c.window_started_at.type)),
                    else_=table.c.window_started_at,
                ),
                stamp_key: now,
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(SuspiciousActivity).where(
                and_(
                    SuspiciousActivity.identifier == identifier,
                    SuspiciousActivity.identifier_type == identifier_type,
                )
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _has_open_log(
        self, identifier: str, identifier_type: str, reason: str, since: datetime
    ) -> bool:
        result = await self.db.execute(
            select(func.count(FraudDetectionLog.id)).where(
                and_(
                    FraudDetectionLog.identifier == identifier,
                    FraudDetectionLog.identifier_type == identifier_type,
                    FraudDetectionLog.detection_reason == reason,
                    FraudDetectionLog.resolved == False,
                    FraudDetectionLog.flagged_at >= since,
                )
            )
        )
        return (result.scalar() or 0) > 0

    def _write_log(
        self,
        attempt: RedemptionAttempt,
        identifier: str,
        identifier_type: str,
        reason: str,
        now: datetime,
        blocked_until: Optional[datetime] = None,
    ) -> FraudDetectionLog:
        log = FraudDetectionLog(
            identifier=identifier,
            identifier_type=identifier_type,
            user_id=attempt.user_id,
            code=attempt.code,
            detection_reason=reason,
            risk_score=RISK_SCORES[reason],
            flagged_at=now,
            blocked_until=blocked_until,
            resolved=False,
        )
        self.db.add(log)
        return log

    async def _score_failures(
        self, attempt: RedemptionAttempt, config: SecurityConfig, now: datetime
    ) -> Tuple[List[str], bool]:
        reasons: List[str] = []
        blocked = False
        identifiers = [
            (attempt.ip_address, IDENTIFIER_IP),
            (attempt.device_fingerprint, IDENTIFIER_DEVICE),
        ]
        for identifier, identifier_type in identifiers:
            if not _known(identifier):
                continue
            activity = await self._record_outcome(identifier, identifier_type, attempt.success, now)
            if attempt.success or activity.failed_attempts < config.suspicious_attempt_threshold:
                continue

            should_block = identifier_type == IDENTIFIER_DEVICE or config.block_suspicious_ips
            if should_block and await self.is_blocked(
                identifier if identifier_type == IDENTIFIER_IP else None,
                identifier if identifier_type == IDENTIFIER_DEVICE else None,
            ):
                continue
            if not should_block and await self._has_open_log(
                identifier, identifier_type, REASON_REPEATED_FAILURES, as_utc(activity.window_started_at)
            ):
                continue

            blocked_until = now + timedelta(hours=config.auto_block_duration) if should_block else None
            self._write_log(attempt, identifier, identifier_type, REASON_REPEATED_FAILURES, now, blocked_until)
            reasons.append(REASON_REPEATED_FAILURES)
            blocked = blocked or should_block
            structured_logger.warning(
                message="Repeated failed redemptions detected",
                user_id=str(attempt.user_id),
                metadata={
                    "identifier_type": identifier_type,
                    "failed_attempts": activity.failed_attempts,
                    "threshold": config.suspicious_attempt_threshold,
                    "blocked_until": blocked_until,
                },
            )
        return reasons, blocked

    async def _check_device_changes(
        self, attempt: RedemptionAttempt, config: SecurityConfig, now: datetime
    ) -> bool:
        if not attempt.success or not _known(attempt.device_fingerprint):
            return False

        since = now - timedelta(hours=settings.FRAUD_OBSERVATION_WINDOW_HOURS)
        result = await self.db.execute(
            select(func.count(func.distinct(CodeRedemptionLog.device_fingerprint))).where(
                and_(
                    CodeRedemptionLog.user_id == attempt.user_id,
                    CodeRedemptionLog.success == True,
                    CodeRedemptionLog.device_fingerprint.is_not(None),
                    CodeRedemptionLog.redeemed_at >= since,
                )
            )
        )
        distinct_devices = result.scalar() or 0
        allowed_devices = config.device_change_limit if config.allow_device_change else 1
        if distinct_devices <= allowed_devices:
            return False

        user_identifier = str(attempt.user_id)
        if await self._has_open_log(user_identifier, IDENTIFIER_USER, REASON_DEVICE_CHANGES, since):
            return False

        self._write_log(attempt, user_identifier, IDENTIFIER_USER, REASON_DEVICE_CHANGES, now)
        logger.warning(
            f"User {attempt.user_id} redeemed from {distinct_devices} devices "
            f"(allowed {allowed_devices})"
        )
        return True

    async def _check_rapid_fire(self, attempt: RedemptionAttempt, now: datetime) -> bool:
        matchers = [CodeRedemptionLog.user_id == attempt.user_id]
        if _known(attempt.ip_address):
            matchers.append(CodeRedemptionLog.ip_address == attempt.ip_address)
        if _known(attempt.device_fingerprint):
            matchers.append(CodeRedemptionLog.device_fingerprint == attempt.device_fingerprint)

        since = now - RAPID_FIRE_WINDOW
        result = await self.db.execute(
            select(func.count(CodeRedemptionLog.id)).where(
                and_(or_(*matchers), CodeRedemptionLog.redeemed_at >= since)
            )
        )
        recent_attempts = result.scalar() or 0
        if recent_attempts <= RAPID_FIRE_MAX_ATTEMPTS:
            return False

        user_identifier = str(attempt.user_id)
        if await self._has_open_log(user_identifier, IDENTIFIER_USER, REASON_RAPID_FIRE, since):
            return False

        self._write_log(attempt, user_identifier, IDENTIFIER_USER, REASON_RAPID_FIRE, now)
        logger.warning(f"Rapid-fire redemption attempts for user {attempt.user_id}: {recent_attempts} in the last minute")
        return True

    async def detect_fraudulent_activity(self, attempt: RedemptionAttempt) -> FraudAssessment:
        """
        Feed one redemption outcome into the policy.

        Args:
            attempt: The attempt, successful or not

        Returns:
            FraudAssessment saying whether anything was flagged or blocked
        """
        config = await self._get_config()
        if not config.fraud_detection_enabled:
            return FraudAssessment()

        now = utcnow()
        reasons, blocked = await self._score_failures(attempt, config, now)
        if await self._check_device_changes(attempt, config, now):
            reasons.append(REASON_DEVICE_CHANGES)
        if await self._check_rapid_fire(attempt, now):
            reasons.append(REASON_RAPID_FIRE)

        return FraudAssessment(flagged=bool(reasons), blocked=blocked, reasons=reasons)

    async def list_fraud_logs(self, resolved: Optional[bool] = None, limit: int = 50) -> List[FraudDetectionLog]:
        query = select(FraudDetectionLog)
        if resolved is not None:
            query = query.where(FraudDetectionLog.resolved == resolved)
        result = await self.db.execute(query.order_by(FraudDetectionLog.flagged_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def resolve_fraud_log(self, log_id: UUID, admin_id: str, notes: Optional[str] = None) -> FraudDetectionLog:
        """Mark a fraud log resolved; any block it carried is lifted."""
        async with transaction_scope(self.db):
            log = await self.db.get(FraudDetectionLog, log_id)
            if not log:
                raise NotFoundException(message="Fraud log not found", resource="fraud_detection_log")
            if log.resolved:
                raise ConflictException(message="Fraud log is already resolved")

            log.resolved = True
            log.resolved_by = str(admin_id)
            log.resolved_at = utcnow()
            log.resolution_notes = notes
            await self.db.flush()

        structured_logger.info(
            message="Fraud log resolved",
            user_id=str(admin_id),
            metadata={"fraud_log_id": str(log_id), "reason": log.detection_reason},
        )
        return log
