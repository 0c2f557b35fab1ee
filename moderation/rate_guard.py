"""
Rate limiting and duplicate detection against the submission ledger

Checks only read the ledger. The pipeline records a submission after the
comment has been stored, so a failed write never consumes quota.
Counters are read-then-write without locking: a burst of simultaneous
requests from one actor may exceed a cap by a small margin.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from database.db_manager import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    max_comments: int
    window_minutes: int

    def window_start(self, now: datetime) -> datetime:
        return now - timedelta(minutes=self.window_minutes)


PER_IP_LIMIT = RateLimit(max_comments=5, window_minutes=60)
PER_EMAIL_LIMIT = RateLimit(max_comments=3, window_minutes=60)
PER_POST_LIMIT = RateLimit(max_comments=2, window_minutes=10)
DUPLICATE_WINDOW_MINUTES = 60

# Longest window any check looks at; older ledger rows are dead weight
LEDGER_RETENTION_MINUTES = max(
    PER_IP_LIMIT.window_minutes,
    PER_EMAIL_LIMIT.window_minutes,
    PER_POST_LIMIT.window_minutes,
    DUPLICATE_WINDOW_MINUTES,
)


@dataclass
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = GuardDecision(allowed=True)


def content_hash(content: str) -> str:
    """SHA-256 of the trimmed, lower-cased content"""
    return hashlib.sha256(content.strip().lower().encode('utf-8')).hexdigest()


class RateGuard:
    """Windowed counters and content-hash duplicate check over the ledger"""

    def __init__(self, db_manager: DatabaseManager, clock: Callable[[], datetime] = datetime.utcnow):
        """
        Args:
            db_manager: DatabaseManager holding the comment_submissions ledger
            clock: Returns the current naive UTC time
        """
        self.db_manager = db_manager
        self.clock = clock

    def check_rate_limit(self, ip_address: str, email: Optional[str], post_id: int) -> GuardDecision:
        """
        Evaluate per-IP, per-email and per-post limits in that order

        The first exceeded limit short-circuits with its message.
        """
        now = self.clock()

        ip_count = self.db_manager.count_submissions(
            since=PER_IP_LIMIT.window_start(now),
            ip_address=ip_address
        )
        if ip_count >= PER_IP_LIMIT.max_comments:
            logger.info(f"Rate limit per IP hit: {ip_address} ({ip_count} submissions)")
            return GuardDecision(
                allowed=False,
                reason=(
                    f"Has excedido el límite de {PER_IP_LIMIT.max_comments} comentarios por hora "
                    f"desde esta IP. Por favor, intenta más tarde."
                )
            )

        if email:
            email_count = self.db_manager.count_submissions(
                since=PER_EMAIL_LIMIT.window_start(now),
                email=email
            )
            if email_count >= PER_EMAIL_LIMIT.max_comments:
                logger.info(f"Rate limit per email hit ({email_count} submissions)")
                return GuardDecision(
                    allowed=False,
                    reason=(
                        f"Has excedido el límite de {PER_EMAIL_LIMIT.max_comments} comentarios por hora "
                        f"con este email. Por favor, intenta más tarde."
                    )
                )

        post_count = self.db_manager.count_submissions(
            since=PER_POST_LIMIT.window_start(now),
            ip_address=ip_address,
            post_id=post_id
        )
        if post_count >= PER_POST_LIMIT.max_comments:
            logger.info(f"Rate limit per post hit: {ip_address} on post {post_id}")
            return GuardDecision(
                allowed=False,
                reason=(
                    f"Has excedido el límite de {PER_POST_LIMIT.max_comments} comentarios por post "
                    f"cada {PER_POST_LIMIT.window_minutes} minutos. Por favor, espera un momento."
                )
            )

        return ALLOWED

    def check_duplicate(self, content: str, ip_address: str, email: Optional[str]) -> GuardDecision:
        """Reject content whose hash was submitted by the same IP or email within the window"""
        digest = content_hash(content)
        since = self.clock() - timedelta(minutes=DUPLICATE_WINDOW_MINUTES)

        duplicate = self.db_manager.has_submission_hash(digest, since, ip_address=ip_address)
        if not duplicate and email:
            duplicate = self.db_manager.has_submission_hash(digest, since, email=email)

        if duplicate:
            logger.info(f"Duplicate comment content from {ip_address}")
            return GuardDecision(
                allowed=False,
                reason="Ya has enviado un comentario idéntico recientemente"
            )
        return ALLOWED

    def record_submission(self, ip_address: str, email: Optional[str], post_id: int, content: str):
        """Append an accepted submission to the ledger"""
        self.db_manager.record_submission(
            ip_address=ip_address,
            email=email,
            post_id=post_id,
            content_hash=content_hash(content),
            created_at=self.clock()
        )

    def prune(self) -> int:
        """Drop ledger rows no window can see anymore"""
        cutoff = self.clock() - timedelta(minutes=LEDGER_RETENTION_MINUTES)
        removed = self.db_manager.prune_submissions(cutoff)
        if removed:
            logger.info(f"Pruned {removed} expired submission records")
        return removed
