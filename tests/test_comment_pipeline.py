"""
Tests for the public submission protocol and admin moderation
"""
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from exceptions import (
    ValidationError, NotFoundError, RateLimitedError, DuplicateSubmissionError,
    SpamRejectedError, AuthError, ForbiddenError
)
from identity import Identity, ADMIN_ROLE
from moderation.pipeline import (
    ANONYMOUS_EMAIL, ANONYMOUS_NAME, MISSING_FIELDS_MESSAGE,
    CommentModerationService, CommentSubmission, ClientInfo
)
from moderation.rate_guard import RateGuard
from notifications.notifier import Notifier

ADMIN = Identity(id="admin", email="admin@localhost", role=ADMIN_ROLE)
READER = Identity(id="user-1", email="lector@example.com")
CLIENT = ClientInfo(ip_address="203.0.113.7", user_agent="pytest")


@pytest.fixture
def notifier(db_manager):
    return Notifier(db_manager)


@pytest.fixture
def service(db_manager, notifier):
    return CommentModerationService(db_manager, RateGuard(db_manager), notifier=notifier)


def submission(post_id, content="Me ha gustado mucho este post", **overrides):
    data = {
        'post_id': post_id,
        'content': content,
        'author_name': 'Ana',
        'author_email': 'Ana@Example.com',
    }
    data.update(overrides)
    return CommentSubmission(**data)


@pytest.mark.asyncio
async def test_submission_creates_pending_comment(service, db_manager, notifier, post):
    comment = await service.submit_comment(submission(post.id, content="  Me ha gustado mucho  "), CLIENT)
    await notifier.wait_for_pending()

    assert comment.approved is False
    assert comment.content == "Me ha gustado mucho"
    assert comment.author_email == "ana@example.com"
    assert comment.ip_address == "203.0.113.7"
    assert comment.user_agent == "pytest"
    assert comment.spam_score == 0
    assert db_manager.count_submissions(since=datetime(2000, 1, 1)) == 1


@pytest.mark.asyncio
async def test_post_author_notified(service, db_manager, notifier, post):
    comment = await service.submit_comment(submission(post.id), CLIENT)
    await notifier.wait_for_pending()

    notifications = db_manager.list_notifications("author-1")
    assert len(notifications) == 1
    assert notifications[0]['type'] == 'comment'
    assert notifications[0]['link'] == '/posts/primer-post'
    assert notifications[0]['metadata'] == {'commentId': comment.id, 'postId': post.id}


@pytest.mark.asyncio
async def test_honeypot_looks_like_missing_fields(service, db_manager, post):
    with pytest.raises(ValidationError) as exc_info:
        await service.submit_comment(submission(post.id, honeypot="http://spam.example"), CLIENT)

    assert exc_info.value.message == MISSING_FIELDS_MESSAGE
    assert db_manager.list_comments() == []


@pytest.mark.asyncio
async def test_whitespace_honeypot_still_rejected(service, db_manager, post):
    with pytest.raises(ValidationError) as exc_info:
        await service.submit_comment(submission(post.id, honeypot="   "), CLIENT)

    assert exc_info.value.message == MISSING_FIELDS_MESSAGE
    assert db_manager.list_comments() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {'content': '   '},
    {'content': None},
    {'author_name': ''},
    {'author_email': None},
])
async def test_required_fields(service, post, overrides):
    with pytest.raises(ValidationError) as exc_info:
        await service.submit_comment(submission(post.id, **overrides), CLIENT)

    assert exc_info.value.message == MISSING_FIELDS_MESSAGE


@pytest.mark.asyncio
async def test_invalid_email_rejected(service, post):
    with pytest.raises(ValidationError):
        await service.submit_comment(submission(post.id, author_email="no-es-email"), CLIENT)


@pytest.mark.asyncio
async def test_content_over_limit_rejected(service, post):
    with pytest.raises(ValidationError):
        await service.submit_comment(submission(post.id, content="palabra " * 700), CLIENT)


@pytest.mark.asyncio
async def test_unknown_post(service):
    with pytest.raises(NotFoundError):
        await service.submit_comment(submission(4242), CLIENT)


@pytest.mark.asyncio
async def test_parent_must_belong_to_post(service, db_manager, post, make_comment):
    other_post = db_manager.create_post(title="Otro", slug="otro")
    foreign = make_comment(post_id=other_post.id)

    with pytest.raises(ValidationError):
        await service.submit_comment(submission(post.id, parent_id=foreign.id), CLIENT)

    parent = make_comment()
    reply = await service.submit_comment(submission(post.id, parent_id=parent.id), CLIENT)
    assert reply.parent_id == parent.id


@pytest.mark.asyncio
async def test_anonymous_comment_uses_sentinels(service, post):
    comment = await service.submit_comment(
        submission(post.id, author_name="Ana", author_email="ana@example.com",
                   author_website="https://ana.example", is_anonymous=True),
        CLIENT
    )

    assert comment.is_anonymous is True
    assert comment.author_name == ANONYMOUS_NAME
    assert comment.author_email == ANONYMOUS_EMAIL
    assert comment.author_website is None


@pytest.mark.asyncio
async def test_anonymous_needs_no_name_or_email(service, post):
    comment = await service.submit_comment(
        submission(post.id, author_name=None, author_email=None, is_anonymous=True),
        CLIENT
    )

    assert comment.author_name == ANONYMOUS_NAME


@pytest.mark.asyncio
async def test_sixth_comment_from_same_ip_rejected(service, db_manager):
    posts = [db_manager.create_post(title=f"Post {i}", slug=f"post-{i}") for i in range(6)]

    for i, target in enumerate(posts[:5]):
        await service.submit_comment(
            submission(target.id, content=f"Comentario distinto número {i}", is_anonymous=True),
            CLIENT
        )

    with pytest.raises(RateLimitedError):
        await service.submit_comment(
            submission(posts[5].id, content="Comentario distinto número 5", is_anonymous=True),
            CLIENT
        )
    assert len(db_manager.list_comments()) == 5


@pytest.mark.asyncio
async def test_duplicate_content_rejected(service, db_manager):
    first = db_manager.create_post(title="A", slug="a")
    second = db_manager.create_post(title="B", slug="b")
    await service.submit_comment(submission(first.id, content="Totalmente de acuerdo"), CLIENT)

    with pytest.raises(DuplicateSubmissionError):
        await service.submit_comment(submission(second.id, content="  TOTALMENTE de acuerdo "), CLIENT)


@pytest.mark.asyncio
async def test_spam_rejected_with_reason(service, db_manager, post):
    with pytest.raises(SpamRejectedError) as exc_info:
        await service.submit_comment(
            submission(post.id, content="Gana en el casino y pide un loan hoy"),
            CLIENT
        )

    assert exc_info.value.score == 20
    assert exc_info.value.message == "Tu comentario fue marcado como spam: términos sospechosos"
    assert exc_info.value.reasons == ["suspicious terms (gambling, finance)"]
    assert db_manager.list_comments() == []
    # Rejected content does not consume quota
    assert db_manager.count_submissions(since=datetime(2000, 1, 1)) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("prior_approved, expected", [(5, True), (4, False)])
async def test_auto_approval_threshold(service, make_comment, post, prior_approved, expected):
    for i in range(prior_approved):
        make_comment(user_id=READER.id, content=f"Comentario aprobado {i}")
    make_comment(user_id=READER.id, approved=False, content="Pendiente")

    comment = await service.submit_comment(submission(post.id), CLIENT, user=READER)

    assert comment.approved is expected
    assert comment.user_id == READER.id


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_submission(db_manager, post):
    notifier = MagicMock()
    notifier.dispatch.side_effect = RuntimeError("sink down")
    service = CommentModerationService(db_manager, RateGuard(db_manager), notifier=notifier)

    comment = await service.submit_comment(submission(post.id), CLIENT)

    assert comment.id is not None
    notifier.dispatch.assert_called_once()


@pytest.mark.asyncio
async def test_ledger_failure_does_not_fail_submission(db_manager, post):
    guard = RateGuard(db_manager)
    guard.record_submission = MagicMock(side_effect=RuntimeError("ledger down"))
    service = CommentModerationService(db_manager, guard)

    comment = await service.submit_comment(submission(post.id), CLIENT)

    assert db_manager.get_comment(comment.id) is not None


def test_approve_is_idempotent(service, make_comment):
    comment = make_comment(approved=False)

    assert service.approve_comment(comment.id, ADMIN).approved is True
    assert service.approve_comment(comment.id, ADMIN).approved is True


def test_moderation_requires_admin(service, make_comment):
    comment = make_comment(approved=False)

    with pytest.raises(AuthError):
        service.approve_comment(comment.id, None)
    with pytest.raises(ForbiddenError):
        service.delete_comment(comment.id, READER)


def test_edit_content_revalidated(service, make_comment):
    comment = make_comment()

    updated = service.update_comment(comment.id, ADMIN, content="  Texto corregido  ")
    assert updated.content == "Texto corregido"

    with pytest.raises(ValidationError):
        service.update_comment(comment.id, ADMIN, content="   ")


def test_delete_removes_replies(service, db_manager, make_comment):
    parent = make_comment()
    reply = make_comment(parent_id=parent.id)

    service.delete_comment(parent.id, ADMIN)

    assert db_manager.get_comment(parent.id) is None
    assert db_manager.get_comment(reply.id) is None
    with pytest.raises(NotFoundError):
        service.delete_comment(parent.id, ADMIN)


def test_list_comments_filters(service, make_comment):
    make_comment(approved=True)
    pending = make_comment(approved=False)

    listed = service.list_comments(ADMIN, approved=False)

    assert [c.id for c in listed] == [pending.id]
