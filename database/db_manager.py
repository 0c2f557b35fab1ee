"""
Database manager for SQLite database
Handles initialization, table creation, and the queries used by the
moderation pipeline and the AI agent engine
"""
import logging
import time
from datetime import datetime
from typing import Optional, List, Callable, TypeVar
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from database.models import (
    Base, UserProfile, Post, Comment, CommentVote, CommentSubmission,
    Notification, AIAgent, AIExecution
)
from database.schemas import (
    PostRecord, UserRecord, CommentRecord, VoteRecord, AgentRecord, ExecutionRecord
)

logger = logging.getLogger(__name__)

# SQLite error codes
SQLITE_BUSY = 5
SQLITE_LOCKED = 6

T = TypeVar('T')


class DatabaseManager:
    """Manages SQLite database connection and operations"""

    def __init__(self, db_path: str = "blog.db", timeout: float = 30.0):
        """
        Initialize database manager

        Args:
            db_path: Path to SQLite database file
            timeout: Timeout for database operations in seconds
        """
        self.db_path = db_path
        self.timeout = timeout
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={
                "check_same_thread": False,  # Sessions are used from the event loop and executor threads
                "timeout": timeout,
            },
            pool_pre_ping=True
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        self._enable_wal_mode()

    def _enable_wal_mode(self):
        """Enable WAL (Write-Ahead Logging) mode for better concurrency"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.execute(text("PRAGMA busy_timeout=30000"))
                conn.commit()
            logger.debug("WAL mode enabled for SQLite")
        except Exception as e:
            logger.warning(f"Could not enable WAL mode: {e}")

    def init_db(self):
        """Initialize database - create all tables and indexes"""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at {self.db_path}")
        except SQLAlchemyError as e:
            logger.error(f"Error initializing database: {e}")
            raise

    def _retry_on_lock(self, func: Callable[[], T], max_retries: int = 5, base_delay: float = 0.1) -> T:
        """
        Retry function with exponential backoff on SQLite lock errors

        Args:
            func: Function to execute
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for exponential backoff

        Returns:
            Result of function execution
        """
        for attempt in range(max_retries):
            try:
                return func()
            except OperationalError as e:
                error_code = getattr(e.orig, 'sqlite_errno', None)
                if error_code not in (SQLITE_BUSY, SQLITE_LOCKED) or attempt == max_retries - 1:
                    raise
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"SQLite lock error (attempt {attempt + 1}/{max_retries}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                time.sleep(delay)

    def _write(self, operation: Callable[[Session], T]) -> T:
        """Run a write operation in its own session, committing on success"""
        def _run():
            session = self.get_session()
            try:
                result = operation(session)
                session.commit()
                return result
            except SQLAlchemyError:
                session.rollback()
                raise
            finally:
                session.close()

        return self._retry_on_lock(_run)

    def get_session(self) -> Session:
        """Get a new database session"""
        return self.SessionLocal()

    # ------------------------------------------------------------------
    # Users and posts
    # ------------------------------------------------------------------

    def create_user(self, user_id: str, email: str, name: Optional[str] = None,
                    role: str = 'user', api_token: Optional[str] = None) -> UserRecord:
        def _create(session: Session):
            profile = UserProfile(id=user_id, email=email, name=name, role=role, api_token=api_token)
            session.add(profile)
            session.flush()
            return UserRecord.model_validate(profile)

        return self._write(_create)

    def get_user_by_token(self, api_token: str) -> Optional[UserRecord]:
        session = self.get_session()
        try:
            profile = session.query(UserProfile).filter(UserProfile.api_token == api_token).first()
            return UserRecord.model_validate(profile) if profile else None
        finally:
            session.close()

    def create_post(self, title: str, slug: str, author_id: Optional[str] = None,
                    published: bool = True) -> PostRecord:
        def _create(session: Session):
            post = Post(title=title, slug=slug, author_id=author_id, published=published)
            session.add(post)
            session.flush()
            return PostRecord.model_validate(post)

        return self._write(_create)

    def get_post(self, post_id: int) -> Optional[PostRecord]:
        session = self.get_session()
        try:
            post = session.query(Post).filter(Post.id == post_id).first()
            return PostRecord.model_validate(post) if post else None
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment_data: dict) -> CommentRecord:
        """
        Insert a comment and return the stored record

        Args:
            comment_data: Dictionary with comment fields matching Comment model
        """
        def _create(session: Session):
            comment = Comment(**comment_data)
            session.add(comment)
            session.flush()
            record = CommentRecord.model_validate(comment)
            logger.info(f"Comment saved: {record.id} on post {record.post_id} (approved={record.approved})")
            return record

        return self._write(_create)

    def get_comment(self, comment_id: int) -> Optional[CommentRecord]:
        session = self.get_session()
        try:
            comment = session.query(Comment).filter(Comment.id == comment_id).first()
            return CommentRecord.model_validate(comment) if comment else None
        finally:
            session.close()

    def list_comments(self, approved: Optional[bool] = None, post_id: Optional[int] = None,
                      limit: Optional[int] = None) -> List[CommentRecord]:
        """
        List comments, newest first

        Args:
            approved: Filter by approval state (None for all)
            post_id: Filter by post
            limit: Maximum number of comments to return
        """
        session = self.get_session()
        try:
            query = session.query(Comment)
            if approved is not None:
                query = query.filter(Comment.approved == approved)
            if post_id is not None:
                query = query.filter(Comment.post_id == post_id)
            query = query.order_by(Comment.created_at.desc(), Comment.id.desc())
            if limit:
                query = query.limit(limit)
            return [CommentRecord.model_validate(c) for c in query.all()]
        finally:
            session.close()

    def update_comment(self, comment_id: int, approved: Optional[bool] = None,
                       content: Optional[str] = None,
                       spam_score: Optional[int] = None) -> Optional[CommentRecord]:
        """Update moderation fields of a comment, None if it does not exist"""
        def _update(session: Session):
            comment = session.query(Comment).filter(Comment.id == comment_id).first()
            if not comment:
                logger.warning(f"Comment with id {comment_id} not found")
                return None
            if approved is not None:
                comment.approved = approved
            if content is not None:
                comment.content = content
            if spam_score is not None:
                comment.spam_score = spam_score
            session.flush()
            return CommentRecord.model_validate(comment)

        return self._write(_update)

    def delete_comment(self, comment_id: int) -> bool:
        """
        Hard-delete a comment together with its replies and their votes

        Returns:
            True if the comment existed
        """
        def _delete(session: Session):
            if not session.query(Comment.id).filter(Comment.id == comment_id).first():
                return False

            doomed = [comment_id]
            frontier = [comment_id]
            while frontier:
                children = [
                    row.id for row in
                    session.query(Comment.id).filter(Comment.parent_id.in_(frontier)).all()
                ]
                doomed.extend(children)
                frontier = children

            session.query(CommentVote).filter(
                CommentVote.comment_id.in_(doomed)
            ).delete(synchronize_session=False)
            session.query(Comment).filter(
                Comment.id.in_(doomed)
            ).delete(synchronize_session=False)
            logger.info(f"Comment {comment_id} deleted ({len(doomed) - 1} replies)")
            return True

        return self._write(_delete)

    def count_approved_comments(self, user_id: str) -> int:
        """Number of approved comments authored by a registered user"""
        session = self.get_session()
        try:
            return session.query(Comment).filter(
                Comment.user_id == user_id,
                Comment.approved.is_(True)
            ).count()
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    @staticmethod
    def _voter_filter(query, user_id: Optional[str], voter_ip: Optional[str],
                      voter_email: Optional[str]):
        if user_id:
            return query.filter(CommentVote.user_id == user_id)
        query = query.filter(CommentVote.user_id.is_(None), CommentVote.voter_ip == voter_ip)
        if voter_email:
            return query.filter(CommentVote.voter_email == voter_email)
        return query.filter(CommentVote.voter_email.is_(None))

    @staticmethod
    def _adjust_counter(comment: Comment, vote_type: str, delta: int):
        field = 'upvotes' if vote_type == 'upvote' else 'downvotes'
        current = getattr(comment, field) or 0
        setattr(comment, field, max(0, current + delta))

    def find_vote(self, comment_id: int, user_id: Optional[str] = None,
                  voter_ip: Optional[str] = None,
                  voter_email: Optional[str] = None) -> Optional[VoteRecord]:
        """Live vote of one identity on a comment"""
        session = self.get_session()
        try:
            query = session.query(CommentVote).filter(CommentVote.comment_id == comment_id)
            vote = self._voter_filter(query, user_id, voter_ip, voter_email).first()
            return VoteRecord.model_validate(vote) if vote else None
        finally:
            session.close()

    def insert_vote(self, comment_id: int, vote_type: str, user_id: Optional[str] = None,
                    voter_ip: Optional[str] = None,
                    voter_email: Optional[str] = None) -> CommentRecord:
        """Insert a vote and increment the matching counter"""
        def _insert(session: Session):
            comment = session.query(Comment).filter(Comment.id == comment_id).one()
            session.add(CommentVote(
                comment_id=comment_id,
                vote_type=vote_type,
                user_id=user_id,
                voter_ip=None if user_id else voter_ip,
                voter_email=None if user_id else voter_email,
            ))
            self._adjust_counter(comment, vote_type, 1)
            session.flush()
            return CommentRecord.model_validate(comment)

        return self._write(_insert)

    def remove_vote(self, vote_id: int) -> Optional[CommentRecord]:
        """Delete a vote and decrement its counter"""
        def _remove(session: Session):
            vote = session.query(CommentVote).filter(CommentVote.id == vote_id).first()
            if not vote:
                return None
            comment = session.query(Comment).filter(Comment.id == vote.comment_id).one()
            self._adjust_counter(comment, vote.vote_type, -1)
            session.delete(vote)
            session.flush()
            return CommentRecord.model_validate(comment)

        return self._write(_remove)

    def change_vote(self, vote_id: int, vote_type: str) -> Optional[CommentRecord]:
        """Switch a vote to the other type, moving one count between counters"""
        def _change(session: Session):
            vote = session.query(CommentVote).filter(CommentVote.id == vote_id).first()
            if not vote:
                return None
            comment = session.query(Comment).filter(Comment.id == vote.comment_id).one()
            if vote.vote_type != vote_type:
                self._adjust_counter(comment, vote.vote_type, -1)
                self._adjust_counter(comment, vote_type, 1)
                vote.vote_type = vote_type
            session.flush()
            return CommentRecord.model_validate(comment)

        return self._write(_change)

    def count_votes(self, comment_id: int, vote_type: str) -> int:
        session = self.get_session()
        try:
            return session.query(CommentVote).filter(
                CommentVote.comment_id == comment_id,
                CommentVote.vote_type == vote_type
            ).count()
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Submission ledger
    # ------------------------------------------------------------------

    def count_submissions(self, since: datetime, ip_address: Optional[str] = None,
                          email: Optional[str] = None, post_id: Optional[int] = None) -> int:
        """Count ledger rows newer than `since` matching every given key"""
        session = self.get_session()
        try:
            query = session.query(CommentSubmission).filter(CommentSubmission.created_at >= since)
            if ip_address is not None:
                query = query.filter(CommentSubmission.ip_address == ip_address)
            if email is not None:
                query = query.filter(CommentSubmission.email == email)
            if post_id is not None:
                query = query.filter(CommentSubmission.post_id == post_id)
            return query.count()
        finally:
            session.close()

    def has_submission_hash(self, content_hash: str, since: datetime,
                            ip_address: Optional[str] = None,
                            email: Optional[str] = None) -> bool:
        session = self.get_session()
        try:
            query = session.query(CommentSubmission.id).filter(
                CommentSubmission.content_hash == content_hash,
                CommentSubmission.created_at >= since
            )
            if ip_address is not None:
                query = query.filter(CommentSubmission.ip_address == ip_address)
            if email is not None:
                query = query.filter(CommentSubmission.email == email)
            return query.first() is not None
        finally:
            session.close()

    def record_submission(self, ip_address: str, email: Optional[str], post_id: int,
                          content_hash: str, created_at: Optional[datetime] = None):
        def _record(session: Session):
            session.add(CommentSubmission(
                ip_address=ip_address,
                email=email,
                post_id=post_id,
                content_hash=content_hash,
                created_at=created_at or datetime.utcnow(),
            ))

        self._write(_record)

    def prune_submissions(self, before: datetime) -> int:
        """Delete ledger rows older than `before`, returns number of rows removed"""
        def _prune(session: Session):
            return session.query(CommentSubmission).filter(
                CommentSubmission.created_at < before
            ).delete(synchronize_session=False)

        return self._write(_prune)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def save_notification(self, notification_data: dict) -> int:
        def _save(session: Session):
            notification = Notification(**notification_data)
            session.add(notification)
            session.flush()
            return notification.id

        return self._write(_save)

    def list_notifications(self, user_id: str) -> List[dict]:
        session = self.get_session()
        try:
            rows = session.query(Notification).filter(
                Notification.user_id == user_id
            ).order_by(Notification.created_at.desc()).all()
            return [
                {
                    'id': n.id,
                    'type': n.type,
                    'title': n.title,
                    'message': n.message,
                    'link': n.link,
                    'metadata': n.metadata_ or {},
                    'read': n.read,
                    'created_at': n.created_at,
                }
                for n in rows
            ]
        finally:
            session.close()

    # ------------------------------------------------------------------
    # AI agents
    # ------------------------------------------------------------------

    def create_agent(self, agent_data: dict) -> AgentRecord:
        def _create(session: Session):
            agent = AIAgent(**agent_data)
            session.add(agent)
            session.flush()
            return AgentRecord.model_validate(agent)

        return self._write(_create)

    def get_agent(self, agent_id: int) -> Optional[AgentRecord]:
        session = self.get_session()
        try:
            agent = session.query(AIAgent).filter(AIAgent.id == agent_id).first()
            return AgentRecord.model_validate(agent) if agent else None
        finally:
            session.close()

    def list_agents(self, enabled: Optional[bool] = None) -> List[AgentRecord]:
        session = self.get_session()
        try:
            query = session.query(AIAgent)
            if enabled is not None:
                query = query.filter(AIAgent.enabled == enabled)
            agents = query.order_by(AIAgent.created_at.desc(), AIAgent.id.desc()).all()
            return [AgentRecord.model_validate(a) for a in agents]
        finally:
            session.close()

    def update_agent(self, agent_id: int, updates: dict) -> Optional[AgentRecord]:
        def _update(session: Session):
            agent = session.query(AIAgent).filter(AIAgent.id == agent_id).first()
            if not agent:
                return None
            for field, value in updates.items():
                setattr(agent, field, value)
            session.flush()
            return AgentRecord.model_validate(agent)

        return self._write(_update)

    def delete_agent(self, agent_id: int) -> bool:
        def _delete(session: Session):
            agent = session.query(AIAgent).filter(AIAgent.id == agent_id).first()
            if not agent:
                return False
            session.delete(agent)
            return True

        return self._write(_delete)

    def save_execution(self, agent_id: int, content: str, result: str, metadata: dict,
                       duration_ms: Optional[float] = None) -> int:
        def _save(session: Session):
            execution = AIExecution(
                agent_id=agent_id,
                content=content,
                result=result,
                metadata_=metadata,
                duration_ms=duration_ms,
            )
            session.add(execution)
            session.flush()
            return execution.id

        return self._write(_save)

    def list_executions(self, agent_id: Optional[int] = None, limit: int = 50) -> List[ExecutionRecord]:
        session = self.get_session()
        try:
            query = session.query(AIExecution)
            if agent_id is not None:
                query = query.filter(AIExecution.agent_id == agent_id)
            rows = query.order_by(AIExecution.created_at.desc(), AIExecution.id.desc()).limit(limit).all()
            return [
                ExecutionRecord(
                    id=row.id,
                    agent_id=row.agent_id,
                    content=row.content,
                    result=row.result,
                    metadata=row.metadata_ or {},
                    duration_ms=row.duration_ms,
                    created_at=row.created_at,
                )
                for row in rows
            ]
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict:
        """
        Get database statistics

        Returns:
            Dictionary with statistics
        """
        session = self.get_session()
        try:
            total = session.query(Comment).count()
            approved = session.query(Comment).filter(Comment.approved.is_(True)).count()
            anonymous = session.query(Comment).filter(Comment.is_anonymous.is_(True)).count()
            agents = session.query(AIAgent).count()
            executions = session.query(AIExecution).count()

            return {
                'total': total,
                'approved': approved,
                'pending': total - approved,
                'anonymous': anonymous,
                'agents': agents,
                'executions': executions,
            }
        finally:
            session.close()
