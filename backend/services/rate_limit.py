"""
Per-identifier rate limiting for code redemption attempts
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, case, literal
from datetime import timedelta
from typing import Optional
from uuid import uuid4
import logging

from core.database import dialect_insert, utcnow, as_utc
from models.security import CodeRedemptionRateLimit
from schemas.security import SecurityConfig, RateLimitStatus

logger = logging.getLogger(__name__)


class RedemptionRateLimiter:
    """
    Fixed-window attempt counters keyed by (identifier, identifier_type).

    Counters are changed only through a single INSERT ... ON CONFLICT DO UPDATE
    statement, so concurrent increments never lose updates. Both methods run
    inside the caller's transaction.
    """

    def __init__(self, db: AsyncSession, config: Optional[SecurityConfig] = None):
        self.db = db
        self.config = config

    async def _get_config(self) -> SecurityConfig:
        if self.config is None:
            from services.security import SecurityConfigService
            self.config = await SecurityConfigService(self.db).get_security_configuration()
        return self.config

    async def _get_row(self, identifier: str, identifier_type: str) -> Optional[CodeRedemptionRateLimit]:
        result = await self.db.execute(
            select(CodeRedemptionRateLimit).where(
                and_(
                    CodeRedemptionRateLimit.identifier == identifier,
                    CodeRedemptionRateLimit.identifier_type == identifier_type,
                )
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def check_rate_limit(self, identifier: str, identifier_type: str) -> RateLimitStatus:
        """Blocked when the current window already holds the maximum attempts."""
        config = await self._get_config()
        row = await self._get_row(identifier, identifier_type)
        if not row:
            return RateLimitStatus(identifier=identifier, identifier_type=identifier_type, blocked=False)

        window_started_at = as_utc(row.window_started_at)
        if window_started_at <= utcnow() - timedelta(hours=config.rate_limit_window_hours):
            # Stale window; the next increment starts a fresh one
            return RateLimitStatus(identifier=identifier, identifier_type=identifier_type, blocked=False)

        blocked = row.attempt_count >= config.max_redemption_attempts
        if blocked:
            logger.warning(
                f"Rate limit reached for {identifier_type} {identifier}: "
                f"{row.attempt_count}/{config.max_redemption_attempts} attempts"
            )
        return RateLimitStatus(
            identifier=identifier,
            identifier_type=identifier_type,
            blocked=blocked,
            attempt_count=row.attempt_count,
            window_started_at=window_started_at,
        )

    async def increment_rate_limit(self, identifier: str, identifier_type: str) -> RateLimitStatus:
        """Count one more attempt, starting a new window when the old one has lapsed."""
        config = await self._get_config()
        now = utcnow()
        window_cutoff = now - timedelta(hours=config.rate_limit_window_hours)
        max_attempts = config.max_redemption_attempts
        table = CodeRedemptionRateLimit.__table__

        window_expired = table.c.window_started_at <= window_cutoff
        stmt = dialect_insert(self.db, CodeRedemptionRateLimit).values(
            id=uuid4(),
            identifier=identifier,
            identifier_type=identifier_type,
            attempt_count=1,
            window_started_at=now,
            last_attempt_at=now,
            blocked=1 >= max_attempts,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["identifier", "identifier_type"],
            set_={
                "attempt_count": case((window_expired, 1), else_=table.c.attempt_count + 1),
                "window_started_at": case(
                    (window_expired, literal(now, table.c.window_started_at.type)),
                    else_=table.c.window_started_at,
                ),
                "last_attempt_at": now,
                "blocked": case(
                    (window_expired, literal(1 >= max_attempts)),
                    else_=table.c.attempt_count + 1 >= max_attempts,
                ),
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)

        row = await self._get_row(identifier, identifier_type)
        return RateLimitStatus(
            identifier=identifier,
            identifier_type=identifier_type,
            blocked=bool(row.blocked),
            attempt_count=row.attempt_count,
            window_started_at=as_utc(row.window_started_at),
        )
