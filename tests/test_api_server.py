"""
HTTP surface tests through FastAPI's TestClient
"""
import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from api_server import create_app
from config.settings import Settings
from notifications.notifier import Notifier


class SettingsForTests(Settings):
    API_USERNAME = 'admin'
    API_PASSWORD = 'secreto'
    XAI_API_KEY = 'test-key'
    SPAM_BLOCKED_TERMS = None
    AGENT_EXECUTION_TIMEOUT = 5


ADMIN_AUTH = ('admin', 'secreto')


@pytest.fixture
def backend():
    backend = MagicMock()
    backend.complete = AsyncMock(return_value="Resultado del agente")
    return backend


@pytest.fixture
def client(db_manager, backend):
    app = create_app(
        settings=SettingsForTests,
        db_manager=db_manager,
        llm_backend=backend,
        notifier=Notifier(db_manager)
    )
    with TestClient(app) as test_client:
        yield test_client


def comment_payload(post_id, **overrides):
    payload = {
        'postId': post_id,
        'content': 'Un comentario muy interesante',
        'authorName': 'Ana',
        'authorEmail': 'ana@example.com',
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()['status'] == 'healthy'


def test_llm_health_hides_key(client):
    response = client.get("/api/llm/health")

    assert response.status_code == 200
    assert response.json()['configured'] is True
    assert 'test-key' not in response.text


def test_submit_comment(client, post):
    response = client.post(
        "/api/comments",
        json=comment_payload(post.id),
        headers={'X-Forwarded-For': '203.0.113.9, 10.0.0.1', 'User-Agent': 'pytest-agent'}
    )

    assert response.status_code == 201
    body = response.json()
    assert body['approved'] is False
    assert 'ip_address' not in body

    stored = client.get("/api/comments", auth=ADMIN_AUTH).json()
    assert stored[0]['ip_address'] == '203.0.113.9'
    assert stored[0]['user_agent'] == 'pytest-agent'


def test_submit_errors(client, post):
    assert client.post("/api/comments", json=comment_payload(4242)).status_code == 404

    response = client.post("/api/comments", json=comment_payload(post.id, honeypot="bot"))
    assert response.status_code == 400
    assert response.json() == {'error': 'Faltan campos obligatorios'}

    response = client.post("/api/comments", json=comment_payload(post.id, content="VIAGRA CASINO LOAN aaaaaaaa"))
    assert response.status_code == 400
    assert 'spam' in response.json()['error']


def test_malformed_body_is_400(client):
    response = client.post("/api/comments", content="{no es json", headers={'Content-Type': 'application/json'})

    assert response.status_code == 400
    assert 'error' in response.json()


def test_rate_limit_is_429(client, db_manager):
    target = db_manager.create_post(title="Uno", slug="uno")
    client.post("/api/comments", json=comment_payload(target.id, content="Primer comentario válido"))
    client.post("/api/comments", json=comment_payload(target.id, content="Segundo comentario válido"))

    response = client.post("/api/comments", json=comment_payload(target.id, content="Tercer comentario válido"))

    assert response.status_code == 429


def test_admin_routes_require_credentials(client, make_comment):
    comment = make_comment(approved=False)

    assert client.get("/api/comments").status_code == 401
    assert client.put(f"/api/comments/{comment.id}", json={'approved': True},
                      auth=('admin', 'mala')).status_code == 401


def test_bearer_user_is_not_admin(client, db_manager, make_comment):
    db_manager.create_user('user-1', 'lector@example.com', api_token='token-lector')
    comment = make_comment(approved=False)

    response = client.delete(f"/api/comments/{comment.id}", headers={'Authorization': 'Bearer token-lector'})

    assert response.status_code == 403


def test_approve_edit_delete(client, make_comment):
    comment = make_comment(approved=False)

    response = client.put(f"/api/comments/{comment.id}", json={'approved': True, 'content': ' Editado '},
                          auth=ADMIN_AUTH)
    assert response.status_code == 200
    assert response.json()['approved'] is True
    assert response.json()['content'] == 'Editado'

    assert client.delete(f"/api/comments/{comment.id}", auth=ADMIN_AUTH).status_code == 200
    assert client.delete(f"/api/comments/{comment.id}", auth=ADMIN_AUTH).status_code == 404


def test_vote_toggle_over_http(client, make_comment):
    comment = make_comment(approved=True)
    url = f"/api/comments/{comment.id}/vote"

    first = client.post(url, json={'voteType': 'upvote', 'email': 'ana@example.com'}).json()
    assert (first['action'], first['voteType'], first['upvotes']) == ('created', 'upvote', 1)

    state = client.get(url, params={'email': 'ana@example.com'}).json()
    assert state == {'voteType': 'upvote'}
    assert client.get(url).json() == {'voteType': None}

    second = client.post(url, json={'voteType': 'downvote', 'email': 'ana@example.com'}).json()
    assert (second['action'], second['upvotes'], second['downvotes']) == ('updated', 0, 1)


def test_vote_errors(client, make_comment):
    pending = make_comment(approved=False)

    assert client.post(f"/api/comments/{pending.id}/vote", json={'voteType': 'upvote'}).status_code == 403
    assert client.post("/api/comments/999/vote", json={'voteType': 'upvote'}).status_code == 404
    assert client.post(f"/api/comments/{pending.id}/vote", json={'voteType': 'meh'}).status_code == 400


def test_public_thread(client, post, make_comment):
    root = make_comment(approved=True)
    make_comment(approved=True, parent_id=root.id, content="Respuesta aprobada")
    make_comment(approved=False, content="Pendiente de moderación")

    response = client.get(f"/api/posts/{post.id}/comments")

    assert response.status_code == 200
    tree = response.json()
    assert len(tree) == 1
    assert tree[0]['replies'][0]['content'] == "Respuesta aprobada"
    assert 'author_email' not in tree[0]


def test_agent_crud(client):
    response = client.post("/api/ai-agents", auth=ADMIN_AUTH, json={
        'name': 'Corrector', 'type': 'grammar', 'systemPrompt': 'Eres un corrector.',
        'config': {'temperature': 0.3, 'maxTokens': 500},
    })
    assert response.status_code == 201
    agent = response.json()
    assert agent['user_prompt'].endswith('{{content}}')
    assert agent['config'] == {'temperature': 0.3, 'maxTokens': 500}

    response = client.put(f"/api/ai-agents/{agent['id']}", auth=ADMIN_AUTH, json={'enabled': False})
    assert response.json()['enabled'] is False
    assert response.json()['name'] == 'Corrector'

    assert len(client.get("/api/ai-agents", auth=ADMIN_AUTH).json()) == 1
    assert client.delete(f"/api/ai-agents/{agent['id']}", auth=ADMIN_AUTH).status_code == 200
    assert client.get(f"/api/ai-agents/{agent['id']}", auth=ADMIN_AUTH).status_code == 404


def test_agent_create_validation(client):
    response = client.post("/api/ai-agents", auth=ADMIN_AUTH, json={'name': 'Sin prompt', 'type': 'custom'})
    assert response.status_code == 400

    response = client.post("/api/ai-agents", auth=ADMIN_AUTH, json={
        'name': 'Caliente', 'type': 'custom', 'systemPrompt': 'x', 'config': {'temperature': 5},
    })
    assert response.status_code == 400


def test_agent_defaults(client):
    body = client.get("/api/ai-agents/defaults", auth=ADMIN_AUTH).json()

    assert {item['value'] for item in body['types']} == {'grammar', 'intention', 'critique', 'questions'}


def test_execute_agent(client, backend, db_manager):
    agent = db_manager.create_agent({'name': 'A', 'type': 'custom', 'system_prompt': 'S',
                                     'user_prompt': '{{content}} ({{lang}})'})

    response = client.post(f"/api/ai-agents/{agent.id}/execute", auth=ADMIN_AUTH,
                           json={'content': 'Hola', 'context': {'lang': 'es'}})

    assert response.status_code == 200
    assert response.json() == {
        'success': True,
        'result': 'Resultado del agente',
        'metadata': {'agentName': 'A', 'agentType': 'custom'},
    }
    assert backend.complete.call_args.args[1] == 'Hola (es)'


def test_execute_agent_errors(client, backend, db_manager):
    agent = db_manager.create_agent({'name': 'A', 'type': 'custom', 'system_prompt': 'S'})
    url = f"/api/ai-agents/{agent.id}/execute"

    assert client.post(url, json={'content': 'Hola'}).status_code == 401
    assert client.post(url, auth=ADMIN_AUTH, json={}).status_code == 400
    assert client.post(url, auth=ADMIN_AUTH, json={'content': '   '}).status_code == 400
    assert client.post("/api/ai-agents/999/execute", auth=ADMIN_AUTH, json={'content': 'Hola'}).status_code == 404

    backend.complete.side_effect = ConnectionError("refused")
    response = client.post(url, auth=ADMIN_AUTH, json={'content': 'Hola'})
    assert response.status_code == 503
    assert response.json()['category'] == 'connection'


def test_execute_many_agents(client, db_manager):
    first = db_manager.create_agent({'name': 'A', 'type': 'custom', 'system_prompt': 'S'})

    response = client.post("/api/ai-agents/execute", auth=ADMIN_AUTH,
                           json={'agentIds': [first.id, 999], 'content': 'Hola'})

    results = response.json()['results']
    assert results[str(first.id)]['success'] is True
    assert results['999']['category'] == 'not_found'


def test_generate_excerpt(client, backend):
    backend.complete.return_value = " Resumen corto. "

    response = client.post("/api/posts/generate-excerpt", auth=ADMIN_AUTH,
                           json={'content': 'Texto del post', 'title': 'Título'})

    assert response.status_code == 200
    assert response.json() == {'excerpt': 'Resumen corto.'}


def test_basic_header_encoding_matches_auth_tuple(client):
    token = base64.b64encode(b"admin:secreto").decode()

    response = client.get("/api/ai-agents", headers={'Authorization': f'Basic {token}'})

    assert response.status_code == 200


def test_unexpected_store_failure_renders_json_error(db_manager, backend, post, caplog):
    app = create_app(
        settings=SettingsForTests,
        db_manager=db_manager,
        llm_backend=backend,
        notifier=Notifier(db_manager)
    )
    db_manager.create_comment = MagicMock(side_effect=RuntimeError("disk I/O error"))

    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = test_client.post("/api/comments", json=comment_payload(post.id))

    assert response.status_code == 500
    assert response.headers['content-type'].startswith('application/json')
    assert response.json() == {'error': 'Error interno del servidor'}
    assert 'disk I/O error' not in response.text
    assert any(record.exc_info and 'disk I/O error' in record.getMessage() for record in caplog.records)
