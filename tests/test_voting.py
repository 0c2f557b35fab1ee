"""
Tests for the 3-state vote toggle
"""
import pytest
from sqlalchemy.exc import IntegrityError

from database.models import Comment
from exceptions import ValidationError, NotFoundError, ForbiddenError
from identity import Identity
from moderation.pipeline import CommentModerationService, VoterIdentity
from moderation.rate_guard import RateGuard


@pytest.fixture
def service(db_manager):
    return CommentModerationService(db_manager, RateGuard(db_manager))


@pytest.fixture
def comment(make_comment):
    return make_comment(approved=True)


def assert_counters_match_votes(db_manager, comment_id):
    stored = db_manager.get_comment(comment_id)
    assert stored.upvotes == db_manager.count_votes(comment_id, 'upvote')
    assert stored.downvotes == db_manager.count_votes(comment_id, 'downvote')


def test_full_toggle_cycle(service, db_manager, comment):
    voter = VoterIdentity.resolve(None, "198.51.100.1", "ana@example.com")

    outcome = service.vote(comment.id, 'upvote', voter)
    assert (outcome.action, outcome.vote_type, outcome.upvotes, outcome.downvotes) == ('created', 'upvote', 1, 0)

    outcome = service.vote(comment.id, 'upvote', voter)
    assert (outcome.action, outcome.vote_type, outcome.upvotes, outcome.downvotes) == ('removed', None, 0, 0)
    assert service.get_vote(comment.id, voter) is None

    service.vote(comment.id, 'upvote', voter)
    outcome = service.vote(comment.id, 'downvote', voter)
    assert (outcome.action, outcome.vote_type, outcome.upvotes, outcome.downvotes) == ('updated', 'downvote', 0, 1)
    assert service.get_vote(comment.id, voter) == 'downvote'

    outcome = service.vote(comment.id, 'downvote', voter)
    assert outcome.action == 'removed'
    assert_counters_match_votes(db_manager, comment.id)


def test_identities_are_independent(service, db_manager, comment):
    user = VoterIdentity.resolve(Identity(id="user-1", email="u@example.com"), "198.51.100.1", "x@example.com")
    with_email = VoterIdentity.resolve(None, "198.51.100.1", "Ana@Example.com ")
    ip_only = VoterIdentity.resolve(None, "198.51.100.1")

    assert user.voter_ip is None
    assert with_email.voter_email == "ana@example.com"

    for voter in (user, with_email, ip_only):
        assert service.vote(comment.id, 'upvote', voter).action == 'created'

    stored = db_manager.get_comment(comment.id)
    assert stored.upvotes == 3
    assert service.get_vote(comment.id, ip_only) == 'upvote'
    assert service.get_vote(comment.id, VoterIdentity.resolve(None, "198.51.100.2")) is None
    assert_counters_match_votes(db_manager, comment.id)


def test_cannot_vote_on_pending_comment(service, make_comment):
    pending = make_comment(approved=False)

    with pytest.raises(ForbiddenError):
        service.vote(pending.id, 'upvote', VoterIdentity.resolve(None, "198.51.100.1"))


def test_missing_comment(service):
    with pytest.raises(NotFoundError):
        service.vote(999, 'upvote', VoterIdentity.resolve(None, "198.51.100.1"))


@pytest.mark.parametrize("vote_type", [None, "like", "UPVOTE"])
def test_invalid_vote_type(service, comment, vote_type):
    with pytest.raises(ValidationError):
        service.vote(comment.id, vote_type, VoterIdentity.resolve(None, "198.51.100.1"))


def test_counters_never_negative(db_manager, comment):
    vote_comment = db_manager.insert_vote(comment.id, 'upvote', voter_ip="198.51.100.1")
    assert vote_comment.upvotes == 1

    vote = db_manager.find_vote(comment.id, voter_ip="198.51.100.1")
    # Counter drifted below the live votes
    session = db_manager.get_session()
    try:
        session.query(Comment).filter(Comment.id == comment.id).update({'upvotes': 0})
        session.commit()
    finally:
        session.close()

    assert db_manager.remove_vote(vote.id).upvotes == 0


def test_ip_only_identity_stored_once(db_manager, comment):
    db_manager.insert_vote(comment.id, 'upvote', voter_ip="198.51.100.1")

    with pytest.raises(IntegrityError):
        db_manager.insert_vote(comment.id, 'downvote', voter_ip="198.51.100.1")

    # Same IP with an email, and a different IP, are separate identities
    db_manager.insert_vote(comment.id, 'upvote', voter_ip="198.51.100.1", voter_email="ana@example.com")
    db_manager.insert_vote(comment.id, 'upvote', voter_ip="198.51.100.2")
    assert db_manager.count_votes(comment.id, 'upvote') == 3
