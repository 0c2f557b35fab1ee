"""
Comment moderation pipeline

Public submission path (honeypot, validation, rate and duplicate guard,
spam heuristics, auto-approval, persistence, ledger, notification), admin
moderation and anonymous-capable toggle voting.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, List, Dict

from database.db_manager import DatabaseManager
from database.schemas import CommentRecord, PostRecord
from exceptions import (
    ValidationError, NotFoundError, RateLimitedError, DuplicateSubmissionError,
    SpamRejectedError, ForbiddenError
)
from identity import Identity, require_admin
from moderation.rate_guard import RateGuard
from moderation.spam_filter import SPAM_THRESHOLD, score_content
from notifications.notifier import Notifier

logger = logging.getLogger(__name__)

ANONYMOUS_NAME = 'Anónimo'
ANONYMOUS_EMAIL = 'anonimo@anonymous.invalid'

MAX_CONTENT_LENGTH = 5000
MAX_NAME_LENGTH = 100
AUTO_APPROVE_MIN_APPROVED = 5

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

# Honeypot hits get the same answer as a missing field
MISSING_FIELDS_MESSAGE = 'Faltan campos obligatorios'

VOTE_TYPES = ('upvote', 'downvote')


@dataclass
class CommentSubmission:
    """Raw public submission"""
    post_id: Optional[int]
    content: Optional[str]
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_website: Optional[str] = None
    parent_id: Optional[int] = None
    is_anonymous: bool = False
    honeypot: Optional[str] = None


@dataclass
class ClientInfo:
    """Request metadata kept for audit and rate limiting"""
    ip_address: str = 'unknown'
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class VoterIdentity:
    """
    Who is voting: a registered user, or an IP with an optional email

    user_id is authoritative whenever the visitor is authenticated; the
    IP/email keys are only used for anonymous visitors.
    """
    user_id: Optional[str] = None
    voter_ip: Optional[str] = None
    voter_email: Optional[str] = None

    @classmethod
    def resolve(cls, user: Optional[Identity], ip_address: str,
                email: Optional[str] = None) -> 'VoterIdentity':
        if user is not None:
            return cls(user_id=user.id)
        normalized = (email or '').strip().lower() or None
        return cls(voter_ip=ip_address, voter_email=normalized)

    def as_filter(self) -> Dict[str, Optional[str]]:
        return {
            'user_id': self.user_id,
            'voter_ip': self.voter_ip,
            'voter_email': self.voter_email,
        }


@dataclass
class VoteOutcome:
    action: str  # 'created', 'removed' or 'updated'
    vote_type: Optional[str]
    upvotes: int
    downvotes: int


class CommentModerationService:
    """Orchestrates submission, moderation and voting over the store"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        guard: RateGuard,
        notifier: Optional[Notifier] = None,
        blocked_terms: Optional[Dict[str, List[str]]] = None,
        spam_threshold: int = SPAM_THRESHOLD,
        auto_approve_min: int = AUTO_APPROVE_MIN_APPROVED
    ):
        """
        Args:
            db_manager: DatabaseManager instance
            guard: RateGuard over the submission ledger
            notifier: Notification sink for post authors (optional)
            blocked_terms: Disallowed-term categories overriding the built-in list
            spam_threshold: Spam score classification threshold
            auto_approve_min: Approved comments a registered user needs for auto-approval
        """
        self.db_manager = db_manager
        self.guard = guard
        self.notifier = notifier
        self.blocked_terms = blocked_terms
        self.spam_threshold = spam_threshold
        self.auto_approve_min = auto_approve_min

    # ------------------------------------------------------------------
    # Public submission
    # ------------------------------------------------------------------

    async def submit_comment(self, submission: CommentSubmission, client: ClientInfo,
                             user: Optional[Identity] = None) -> CommentRecord:
        """
        Run the full submission protocol for a public comment

        Args:
            submission: Raw form data
            client: IP address and user agent of the request
            user: Authenticated visitor, if any

        Returns:
            The stored comment, approved or pending

        Raises:
            ValidationError, NotFoundError, RateLimitedError,
            DuplicateSubmissionError, SpamRejectedError
        """
        if submission.honeypot:
            logger.warning(f"Honeypot triggered from {client.ip_address}")
            raise ValidationError(MISSING_FIELDS_MESSAGE)

        content, author_name, author_email = self._validate_submission(submission)

        post = self.db_manager.get_post(submission.post_id)
        if post is None:
            raise NotFoundError('Post no encontrado')
        self._validate_parent(submission.parent_id, post.id)

        ledger_email = None if submission.is_anonymous else author_email

        decision = self.guard.check_rate_limit(client.ip_address, ledger_email, post.id)
        if not decision.allowed:
            raise RateLimitedError(decision.reason)

        decision = self.guard.check_duplicate(content, client.ip_address, ledger_email)
        if not decision.allowed:
            raise DuplicateSubmissionError(decision.reason)

        spam = score_content(content, blocked_terms=self.blocked_terms, threshold=self.spam_threshold)
        if spam.is_spam:
            logger.info(
                f"Comment rejected as spam from {client.ip_address} on post {post.id}: "
                f"score={spam.score} reasons={spam.reason}"
            )
            raise SpamRejectedError(
                f"Tu comentario fue marcado como spam: {spam.display_reason}",
                score=spam.score,
                reasons=spam.reasons
            )

        approved = self._should_auto_approve(user)

        comment = self.db_manager.create_comment({
            'post_id': post.id,
            'parent_id': submission.parent_id,
            'content': content,
            'author_name': ANONYMOUS_NAME if submission.is_anonymous else author_name,
            'author_email': ANONYMOUS_EMAIL if submission.is_anonymous else author_email,
            'author_website': None if submission.is_anonymous else self._clean(submission.author_website),
            'is_anonymous': submission.is_anonymous,
            'user_id': user.id if user else None,
            'approved': approved,
            'spam_score': spam.score,
            'ip_address': client.ip_address,
            'user_agent': client.user_agent,
        })

        try:
            self.guard.record_submission(client.ip_address, ledger_email, post.id, content)
        except Exception as e:
            logger.error(f"Failed to record submission for comment {comment.id}: {e}", exc_info=True)

        self._notify_post_author(post, comment)
        return comment

    @staticmethod
    def _clean(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def _validate_submission(self, submission: CommentSubmission):
        if not submission.post_id:
            raise ValidationError(MISSING_FIELDS_MESSAGE)

        content = self._validate_content(submission.content)

        if submission.is_anonymous:
            return content, None, None

        author_name = self._clean(submission.author_name)
        author_email = self._clean(submission.author_email)
        if not author_name or not author_email:
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        if len(author_name) > MAX_NAME_LENGTH:
            raise ValidationError(f'El nombre no puede superar {MAX_NAME_LENGTH} caracteres')
        if not EMAIL_PATTERN.match(author_email):
            raise ValidationError('El email no es válido')

        return content, author_name, author_email.lower()

    @staticmethod
    def _validate_content(content: Optional[str]) -> str:
        trimmed = (content or '').strip()
        if not trimmed:
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        if len(trimmed) > MAX_CONTENT_LENGTH:
            raise ValidationError(
                f'El comentario no puede superar {MAX_CONTENT_LENGTH} caracteres'
            )
        return trimmed

    def _validate_parent(self, parent_id: Optional[int], post_id: int):
        if parent_id is None:
            return
        parent = self.db_manager.get_comment(parent_id)
        if parent is None or parent.post_id != post_id:
            raise ValidationError('El comentario al que respondes no existe')

    def _should_auto_approve(self, user: Optional[Identity]) -> bool:
        if user is None:
            return False
        approved_count = self.db_manager.count_approved_comments(user.id)
        return approved_count >= self.auto_approve_min

    def _notify_post_author(self, post: PostRecord, comment: CommentRecord):
        if self.notifier is None or not post.author_id:
            return
        try:
            self.notifier.dispatch(
                'comment',
                'Nuevo comentario',
                f'{comment.author_name} comentó en "{post.title}"',
                post.author_id,
                link=f'/posts/{post.slug}',
                metadata={'commentId': comment.id, 'postId': post.id},
            )
        except Exception as e:
            logger.error(f"Could not dispatch notification for comment {comment.id}: {e}")

    # ------------------------------------------------------------------
    # Admin moderation
    # ------------------------------------------------------------------

    def list_comments(self, user: Optional[Identity], approved: Optional[bool] = None,
                      post_id: Optional[int] = None) -> List[CommentRecord]:
        require_admin(user)
        return self.db_manager.list_comments(approved=approved, post_id=post_id)

    def approve_comment(self, comment_id: int, user: Optional[Identity]) -> CommentRecord:
        """Mark a comment approved; approving twice is a no-op"""
        return self.update_comment(comment_id, user, approved=True)

    def update_comment(self, comment_id: int, user: Optional[Identity],
                       approved: Optional[bool] = None,
                       content: Optional[str] = None) -> CommentRecord:
        """
        Approve, reject or edit a comment

        Raises:
            AuthError / ForbiddenError: caller is not an admin
            NotFoundError: comment does not exist
        """
        admin = require_admin(user)
        if content is not None:
            content = self._validate_content(content)

        comment = self.db_manager.update_comment(comment_id, approved=approved, content=content)
        if comment is None:
            raise NotFoundError('Comentario no encontrado')

        logger.info(
            f"Comment {comment_id} updated by {admin.email} "
            f"(approved={approved}, content_edited={content is not None})"
        )
        return comment

    def delete_comment(self, comment_id: int, user: Optional[Identity]):
        admin = require_admin(user)
        if not self.db_manager.delete_comment(comment_id):
            raise NotFoundError('Comentario no encontrado')
        logger.info(f"Comment {comment_id} deleted by {admin.email}")

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def _get_votable_comment(self, comment_id: int) -> CommentRecord:
        comment = self.db_manager.get_comment(comment_id)
        if comment is None:
            raise NotFoundError('Comentario no encontrado')
        if not comment.approved:
            raise ForbiddenError('No se puede votar en comentarios no aprobados')
        return comment

    def vote(self, comment_id: int, vote_type: str, voter: VoterIdentity) -> VoteOutcome:
        """
        Toggle a vote

        No vote -> created; same type again -> removed; other type ->
        updated. Counters move with the vote rows so they always match the
        live votes of the comment.
        """
        if vote_type not in VOTE_TYPES:
            raise ValidationError('Tipo de voto inválido. Debe ser "upvote" o "downvote"')

        self._get_votable_comment(comment_id)
        existing = self.db_manager.find_vote(comment_id, **voter.as_filter())

        if existing is None:
            comment = self.db_manager.insert_vote(comment_id, vote_type, **voter.as_filter())
            action, current = 'created', vote_type
        elif existing.vote_type == vote_type:
            comment = self.db_manager.remove_vote(existing.id)
            action, current = 'removed', None
        else:
            comment = self.db_manager.change_vote(existing.id, vote_type)
            action, current = 'updated', vote_type

        if comment is None:
            # Vote vanished between lookup and write (concurrent toggle)
            comment = self.db_manager.get_comment(comment_id)
            if comment is None:
                raise NotFoundError('Comentario no encontrado')

        logger.debug(f"Vote on comment {comment_id}: {action} ({current})")
        return VoteOutcome(
            action=action,
            vote_type=current,
            upvotes=comment.upvotes,
            downvotes=comment.downvotes
        )

    def get_vote(self, comment_id: int, voter: VoterIdentity) -> Optional[str]:
        """Current vote type of the identity, or None"""
        vote = self.db_manager.find_vote(comment_id, **voter.as_filter())
        return vote.vote_type if vote else None
