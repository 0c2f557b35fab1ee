"""
Shared pytest fixtures: a throwaway SQLite database per test
"""
import pytest

from database.db_manager import DatabaseManager


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(str(tmp_path / "test_blog.db"))
    manager.init_db()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def post(db_manager):
    return db_manager.create_post(title="Primer post", slug="primer-post", author_id="author-1")


@pytest.fixture
def make_comment(db_manager, post):
    """Insert a comment directly, bypassing the submission pipeline"""
    def _make(**overrides):
        data = {
            'post_id': post.id,
            'content': 'Un comentario de prueba razonable',
            'author_name': 'Lectora',
            'author_email': 'lectora@example.com',
            'approved': True,
        }
        data.update(overrides)
        return db_manager.create_comment(data)

    return _make
