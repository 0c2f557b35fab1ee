"""
SQLAlchemy models for the blog back office database
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime, JSON, ForeignKey,
    Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class UserProfile(Base):
    """Registered visitor or admin, resolved from a bearer token"""

    __tablename__ = 'user_profiles'

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default='user')  # 'user' or 'admin'
    api_token = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<UserProfile(id={self.id}, role={self.role})>"


class Post(Base):
    """Published post - only the fields the moderation pipeline reads"""

    __tablename__ = 'posts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)
    author_id = Column(String, nullable=True)
    published = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Post(id={self.id}, slug={self.slug})>"


class Comment(Base):
    """Reader comment on a post"""

    __tablename__ = 'comments'

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey('posts.id', ondelete='CASCADE'), nullable=False)
    parent_id = Column(Integer, ForeignKey('comments.id', ondelete='CASCADE'), nullable=True)

    content = Column(Text, nullable=False)

    # Author information (sentinels when anonymous)
    author_name = Column(String, nullable=False)
    author_email = Column(String, nullable=False)
    author_website = Column(String, nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    user_id = Column(String, nullable=True)

    # Moderation
    approved = Column(Boolean, nullable=False, default=False)
    spam_score = Column(Integer, nullable=False, default=0)

    # Audit
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    # Denormalized vote counters
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_comments_post_approved', 'post_id', 'approved'),
        Index('idx_comments_user_approved', 'user_id', 'approved'),
        Index('idx_comments_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<Comment(id={self.id}, post_id={self.post_id}, approved={self.approved})>"


class CommentVote(Base):
    """One live vote per (comment, voter identity)"""

    __tablename__ = 'comment_votes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    comment_id = Column(Integer, ForeignKey('comments.id', ondelete='CASCADE'), nullable=False)
    vote_type = Column(String, nullable=False)  # 'upvote' or 'downvote'

    # Identity: user_id, or voter_ip (+ voter_email)
    user_id = Column(String, nullable=True)
    voter_ip = Column(String, nullable=True)
    voter_email = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('comment_id', 'user_id', name='uq_vote_user'),
        UniqueConstraint('comment_id', 'voter_ip', 'voter_email', name='uq_vote_anonymous'),
        # NULL emails never collide in the constraint above
        Index('uq_vote_ip_only', 'comment_id', 'voter_ip', unique=True,
              sqlite_where=text('user_id IS NULL AND voter_email IS NULL')),
        Index('idx_votes_comment', 'comment_id'),
    )

    def __repr__(self):
        return f"<CommentVote(id={self.id}, comment_id={self.comment_id}, type={self.vote_type})>"


class CommentSubmission(Base):
    """Append-only ledger of accepted submissions for rate limiting"""

    __tablename__ = 'comment_submissions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String, nullable=False)
    email = Column(String, nullable=True)
    post_id = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_submissions_ip_created', 'ip_address', 'created_at'),
        Index('idx_submissions_email_created', 'email', 'created_at'),
        Index('idx_submissions_hash', 'content_hash'),
    )


class Notification(Base):
    """Back office notification for a user"""

    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    user_id = Column(String, nullable=True)
    link = Column(String, nullable=True)
    metadata_ = Column('metadata', JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class AIAgent(Base):
    """Named prompt preset bound to an LLM model configuration"""

    __tablename__ = 'ai_agents'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, nullable=False)
    system_prompt = Column(Text, nullable=False)
    user_prompt = Column(Text, nullable=False, default='{{content}}')
    enabled = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, nullable=True)  # {model, temperature, maxTokens}
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<AIAgent(id={self.id}, name={self.name}, type={self.type})>"


class AIExecution(Base):
    """Audit log of successful agent executions"""

    __tablename__ = 'ai_executions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(Integer, ForeignKey('ai_agents.id', ondelete='SET NULL'), nullable=True)
    content = Column(Text, nullable=False)
    result = Column(Text, nullable=False)
    metadata_ = Column('metadata', JSON, nullable=True)
    duration_ms = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_executions_agent', 'agent_id'),
    )
