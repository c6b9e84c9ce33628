"""
Unlock code validation and redemption
Runs every redemption through format, fraud block, rate limit, code and lock
checks before the single-use code is atomically marked redeemed
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID
import re
import logging

from core.config import settings
from core.database import transaction_scope, utcnow
from core.exceptions import APIException, ConflictException, TransientStoreException
from core.utils.logging import structured_logger
from models.discounts import PurchaseType
from models.purchases import Purchase
from models.releases import Release
from models.security import IDENTIFIER_IP, IDENTIFIER_USER, IDENTIFIER_DEVICE
from models.unlock_codes import UnlockCode, CodeRedemptionLog, CODE_STATUS_UNUSED, CODE_STATUS_REDEEMED
from schemas.security import SecurityConfig, RedemptionAttempt
from schemas.unlock_codes import (
    ReleaseSummary,
    ValidationResult,
    AlbumInfo,
    RedemptionResult,
    RedemptionStats,
)
from services.fraud_detection import FraudDetectionService
from services.rate_limit import RedemptionRateLimiter
from services.security import SecurityConfigService

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"SH[0-9]{4}")
UNKNOWN = "unknown"

INVALID_FORMAT_MESSAGE = "Invalid code format. Please use format: SH1234"
NOT_FOUND_MESSAGE = "Code not found or invalid"
ALREADY_REDEEMED_MESSAGE = "This code has already been redeemed"
NO_LONGER_VALID_MESSAGE = "This code is no longer valid"
ALREADY_OWNED_MESSAGE = "You already have access to this release."
FRAUD_BLOCK_MESSAGE = "Access temporarily blocked due to suspicious activity"
DEVICE_LOCKED_MESSAGE = "This code is locked to a different device"
IP_LOCKED_MESSAGE = "This code is locked to a different IP address"
REDEMPTION_FAILED_MESSAGE = "Failed to redeem code"

# Deliberately silent about thresholds and remaining attempts
RATE_LIMIT_MESSAGES = {
    IDENTIFIER_IP: "Too many attempts from this network, please try again later",
    IDENTIFIER_USER: "Too many attempts, please try again later",
    IDENTIFIER_DEVICE: "Too many attempts from this device, please try again later",
}

VALIDATION_ERROR_CODES = {
    INVALID_FORMAT_MESSAGE: "VALIDATION_ERROR",
    NOT_FOUND_MESSAGE: "NOT_FOUND",
    ALREADY_REDEEMED_MESSAGE: "ALREADY_REDEEMED",
    NO_LONGER_VALID_MESSAGE: "CODE_INVALID",
}


class RedemptionStage(str, Enum):
    START = "START"
    FORMAT_CHECKED = "FORMAT_CHECKED"
    FRAUD_BLOCK_CHECKED = "FRAUD_BLOCK_CHECKED"
    RATE_LIMIT_CHECKED = "RATE_LIMIT_CHECKED"
    CODE_VALIDATED = "CODE_VALIDATED"
    LOCK_CHECKED = "LOCK_CHECKED"
    REDEEMED = "REDEEMED"
    REJECTED = "REJECTED"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").upper()


def validate_code_format(code: Optional[str]) -> bool:
    return CODE_PATTERN.fullmatch(normalize_code(code)) is not None


def _known(value: Optional[str]) -> bool:
    return bool(value) and value != UNKNOWN


def build_release_summary(release: Release) -> ReleaseSummary:
    creator = release.creator
    artist = creator.full_name.strip() if creator else ""
    return ReleaseSummary(
        id=release.id,
        title=release.title,
        artist=artist,
        cover_art=release.cover_art or settings.PLACEHOLDER_COVER_ART,
        release_type=release.release_type,
        track_count=len(release.tracks),
    )


class UnlockCodeService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_code(self, normalized_code: str) -> Optional[UnlockCode]:
        result = await self.db.execute(
            select(UnlockCode)
            .where(UnlockCode.code == normalized_code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _owns_release(self, user_id: UUID, release_id: UUID) -> bool:
        result = await self.db.execute(
            select(func.count(Purchase.id)).where(
                and_(
                    Purchase.user_id == user_id,
                    Purchase.release_id == release_id,
                    Purchase.status == "COMPLETED",
                )
            )
        )
        return (result.scalar() or 0) > 0

    async def validate_unlock_code(self, code: str, user_id: Optional[UUID] = None) -> ValidationResult:
        """
        Check whether a code could be redeemed right now. Read-only: never
        touches rate limits, fraud counters or logs.
        """
        normalized_code = normalize_code(code)
        if not validate_code_format(normalized_code):
            return ValidationResult(valid=False, error=INVALID_FORMAT_MESSAGE)

        unlock_code = await self._get_code(normalized_code)
        if not unlock_code:
            return ValidationResult(valid=False, error=NOT_FOUND_MESSAGE)

        if unlock_code.redeemed_by:
            return ValidationResult(valid=False, error=ALREADY_REDEEMED_MESSAGE)

        if unlock_code.status != CODE_STATUS_UNUSED:
            return ValidationResult(valid=False, error=NO_LONGER_VALID_MESSAGE)

        already_owned = False
        if user_id is not None:
            already_owned = await self._owns_release(user_id, unlock_code.release_id)

        return ValidationResult(
            valid=True,
            code=normalized_code,
            release=build_release_summary(unlock_code.release),
            already_owned=already_owned,
        )

    def _reject(
        self,
        stage: RedemptionStage,
        user_id: UUID,
        message: str,
        error_code: str,
        reason: Optional[str] = None,
    ) -> RedemptionResult:
        # Internal reason goes to the audit log only
        structured_logger.warning(
            message="Code redemption rejected",
            user_id=str(user_id),
            metadata={
                "stage": stage.value,
                "outcome": RedemptionStage.REJECTED.value,
                "error_code": error_code,
                "reason": reason or message,
            },
        )
        return RedemptionResult(success=False, error=message, error_code=error_code)

    @staticmethod
    def _identifiers(
        user_id: UUID, ip_address: Optional[str], device_fingerprint: Optional[str]
    ) -> List[Tuple[str, str]]:
        identifiers = []
        if _known(ip_address):
            identifiers.append((ip_address, IDENTIFIER_IP))
        identifiers.append((str(user_id), IDENTIFIER_USER))
        if _known(device_fingerprint):
            identifiers.append((device_fingerprint, IDENTIFIER_DEVICE))
        return identifiers

    async def _record_failed_attempt(
        self,
        normalized_code: str,
        user_id: UUID,
        ip_address: Optional[str],
        user_agent: Optional[str],
        device_fingerprint: Optional[str],
        config: SecurityConfig,
    ):
        """Count a failed attempt against every identifier and keep the audit trail."""
        limiter = RedemptionRateLimiter(self.db, config)
        fraud = FraudDetectionService(self.db, config)

        async with transaction_scope(self.db):
            for identifier, identifier_type in self._identifiers(user_id, ip_address, device_fingerprint):
                await limiter.increment_rate_limit(identifier, identifier_type)

            result = await self.db.execute(select(UnlockCode.id).where(UnlockCode.code == normalized_code))
            code_id = result.scalar_one_or_none()
            if code_id is not None:
                self.db.add(CodeRedemptionLog(
                    code_id=code_id,
                    user_id=user_id,
                    ip_address=ip_address if _known(ip_address) else None,
                    user_agent=user_agent,
                    device_fingerprint=device_fingerprint if _known(device_fingerprint) else None,
                    success=False,
                    redeemed_at=utcnow(),
                ))

            if config.fraud_detection_enabled:
                await fraud.detect_fraudulent_activity(RedemptionAttempt(
                    user_id=user_id,
                    code=normalized_code,
                    success=False,
                    ip_address=ip_address,
                    device_fingerprint=device_fingerprint,
                    user_agent=user_agent,
                ))

    async def _redeem(
        self,
        normalized_code: str,
        user_id: UUID,
        ip_address: Optional[str],
        user_agent: Optional[str],
        device_fingerprint: Optional[str],
        config: SecurityConfig,
    ) -> AlbumInfo:
        """
        Unit of work for a redemption. Any failure inside rolls back the code
        update, the purchase and the log together.
        """
        async with transaction_scope(self.db):
            unlock_code = await self._get_code(normalized_code)
            if not unlock_code:
                raise ConflictException(message=NOT_FOUND_MESSAGE, error_code="NOT_FOUND")
            if unlock_code.status != CODE_STATUS_UNUSED or unlock_code.redeemed_by:
                raise ConflictException(message=ALREADY_REDEEMED_MESSAGE, error_code="ALREADY_REDEEMED")

            if config.device_locking_enabled and unlock_code.device_locked_to:
                if unlock_code.device_locked_to != device_fingerprint:
                    raise ConflictException(message=DEVICE_LOCKED_MESSAGE, error_code="DEVICE_LOCKED")
            if config.ip_locking_enabled and unlock_code.ip_locked_to:
                if unlock_code.ip_locked_to != ip_address:
                    raise ConflictException(message=IP_LOCKED_MESSAGE, error_code="IP_LOCKED")
            logger.debug(f"Redemption of {normalized_code} reached {RedemptionStage.LOCK_CHECKED.value}")

            now = utcnow()
            values = {
                "status": CODE_STATUS_REDEEMED,
                "redeemed_by": user_id,
                "redeemed_at": now,
                "updated_at": now,
            }
            if config.device_locking_enabled and _known(device_fingerprint) and not unlock_code.device_locked_to:
                values["device_locked_to"] = device_fingerprint
            if config.ip_locking_enabled and _known(ip_address) and not unlock_code.ip_locked_to:
                values["ip_locked_to"] = ip_address

            # Only one concurrent redeemer can match this row
            result = await self.db.execute(
                update(UnlockCode)
                .where(
                    and_(
                        UnlockCode.id == unlock_code.id,
                        UnlockCode.status == CODE_STATUS_UNUSED,
                        UnlockCode.redeemed_by.is_(None),
                    )
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictException(message=ALREADY_REDEEMED_MESSAGE, error_code="ALREADY_REDEEMED")

            release = unlock_code.release
            self.db.add(Purchase(
                user_id=user_id,
                release_id=unlock_code.release_id,
                type=PurchaseType.UNLOCK_CODES.value,
                price=0.0,
                currency="SHC",
                status="COMPLETED",
            ))
            self.db.add(CodeRedemptionLog(
                code_id=unlock_code.id,
                user_id=user_id,
                ip_address=ip_address if _known(ip_address) else None,
                user_agent=user_agent,
                device_fingerprint=device_fingerprint if _known(device_fingerprint) else None,
                success=True,
                redeemed_at=now,
            ))
            await self.db.flush()

            if config.fraud_detection_enabled:
                await FraudDetectionService(self.db, config).detect_fraudulent_activity(RedemptionAttempt(
                    user_id=user_id,
                    code=normalized_code,
                    success=True,
                    ip_address=ip_address,
                    device_fingerprint=device_fingerprint,
                    user_agent=user_agent,
                ))

            summary = build_release_summary(release)

        return AlbumInfo(
            title=summary.title,
            artist=summary.artist,
            cover=summary.cover_art,
            track_count=summary.track_count,
        )

    async def _record_failed_attempt_after_abort(self, *args):
        try:
            await self._record_failed_attempt(*args)
        except Exception as e:
            structured_logger.error(
                message="Failed to record rejected redemption attempt",
                metadata={"code": args[0]},
                exception=e,
            )

    async def redeem_unlock_code(
        self,
        code: str,
        user_id: UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
        security_config: Optional[SecurityConfig] = None,
    ) -> RedemptionResult:
        """
        Redeem a single-use code for ``user_id``.

        Never raises: every rejection and internal failure comes back as an
        unsuccessful RedemptionResult. Not idempotent; callers retrying after an
        ambiguous failure will be told the code is already redeemed if the first
        attempt committed.
        """
        stage = RedemptionStage.START
        normalized_code = normalize_code(code)
        config = security_config

        try:
            if not validate_code_format(normalized_code):
                return self._reject(stage, user_id, INVALID_FORMAT_MESSAGE, "VALIDATION_ERROR")
            stage = RedemptionStage.FORMAT_CHECKED

            config = config or await SecurityConfigService(self.db).get_security_configuration()

            if config.fraud_detection_enabled:
                if await FraudDetectionService(self.db, config).is_blocked(ip_address, device_fingerprint):
                    return self._reject(
                        stage, user_id, FRAUD_BLOCK_MESSAGE, "FRAUD_BLOCK_ERROR",
                        reason="Active fraud block for requesting IP or device",
                    )
            stage = RedemptionStage.FRAUD_BLOCK_CHECKED

            limiter = RedemptionRateLimiter(self.db, config)
            for identifier, identifier_type in self._identifiers(user_id, ip_address, device_fingerprint):
                status = await limiter.check_rate_limit(identifier, identifier_type)
                if status.blocked:
                    return self._reject(
                        stage, user_id, RATE_LIMIT_MESSAGES[identifier_type], "RATE_LIMIT_ERROR",
                        reason=f"{identifier_type} {identifier} at {status.attempt_count} attempts "
                               f"(max {config.max_redemption_attempts})",
                    )
            stage = RedemptionStage.RATE_LIMIT_CHECKED

            validation = await self.validate_unlock_code(normalized_code, user_id)
            if not validation.valid:
                await self._record_failed_attempt(
                    normalized_code, user_id, ip_address, user_agent, device_fingerprint, config)
                return self._reject(
                    stage, user_id, validation.error,
                    VALIDATION_ERROR_CODES.get(validation.error, "VALIDATION_ERROR"),
                )
            if validation.already_owned:
                return self._reject(stage, user_id, ALREADY_OWNED_MESSAGE, "ALREADY_OWNED")
            stage = RedemptionStage.CODE_VALIDATED

            album = await self._redeem(
                normalized_code, user_id, ip_address, user_agent, device_fingerprint, config)
            stage = RedemptionStage.REDEEMED

        except TransientStoreException as e:
            structured_logger.error(
                message="Code redemption failed: store unavailable",
                user_id=str(user_id),
                metadata={"stage": stage.value},
                exception=e,
            )
            return RedemptionResult(success=False, error=REDEMPTION_FAILED_MESSAGE, error_code=e.error_code)

        except APIException as e:
            # Rejected inside the redemption transaction, which has been rolled back
            if config is not None:
                await self._record_failed_attempt_after_abort(
                    normalized_code, user_id, ip_address, user_agent, device_fingerprint, config)
            return self._reject(stage, user_id, e.message, e.error_code)

        except Exception as e:
            await self.db.rollback()
            structured_logger.error(
                message="Code redemption failed unexpectedly",
                user_id=str(user_id),
                metadata={"stage": stage.value},
                exception=e,
            )
            return RedemptionResult(success=False, error=REDEMPTION_FAILED_MESSAGE, error_code="INTERNAL_ERROR")

        structured_logger.info(
            message="Code redeemed",
            user_id=str(user_id),
            metadata={"stage": stage.value, "code": normalized_code},
        )
        return RedemptionResult(success=True, album=album)

    async def get_user_redemption_stats(self, user_id: UUID) -> RedemptionStats:
        totals = await self.db.execute(
            select(CodeRedemptionLog.success, func.count(CodeRedemptionLog.id))
            .where(CodeRedemptionLog.user_id == user_id)
            .group_by(CodeRedemptionLog.success)
        )
        counts = {bool(success): count for success, count in totals.all()}

        recent = await self.db.execute(
            select(CodeRedemptionLog)
            .where(CodeRedemptionLog.user_id == user_id)
            .order_by(CodeRedemptionLog.redeemed_at.desc())
            .limit(10)
            .execution_options(populate_existing=True)
        )
        successful = counts.get(True, 0)
        failed = counts.get(False, 0)
        return RedemptionStats(
            total_redemptions=successful + failed,
            successful_redemptions=successful,
            failed_redemptions=failed,
            recent_redemptions=[log.to_dict() for log in recent.scalars().all()],
        )
