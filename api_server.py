#!/usr/bin/env python3
"""
REST API of the blog back office
Public comment submission and voting, admin moderation and AI agents
"""
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, APIRouter, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field

from agents.defaults import AGENT_TYPES, DEFAULT_PROMPTS
from agents.executor import AgentExecutor, generate_excerpt
from agents.llm_client import GrokClient
from agents.registry import AgentRegistry
from config.settings import Settings
from database.db_manager import DatabaseManager
from database.schemas import AgentRecord, CommentRecord
from exceptions import BlogError, AuthError, ValidationError, NotFoundError, UnknownError
from identity import Identity, ADMIN_ROLE, require_admin
from moderation.pipeline import (
    CommentModerationService, CommentSubmission, ClientInfo, VoterIdentity
)
from moderation.rate_guard import RateGuard
from moderation.threads import build_comment_tree
from notifications.notifier import Notifier

logger = logging.getLogger(__name__)

# Basic auth for the admin; missing credentials fall through to anonymous
security = HTTPBasic(auto_error=False)


# Request models
class CommentCreate(BaseModel):
    """Public comment form"""
    post_id: Optional[int] = Field(default=None, alias='postId')
    content: Optional[str] = None
    author_name: Optional[str] = Field(default=None, alias='authorName')
    author_email: Optional[str] = Field(default=None, alias='authorEmail')
    author_website: Optional[str] = Field(default=None, alias='authorWebsite')
    parent_id: Optional[int] = Field(default=None, alias='parentId')
    is_anonymous: bool = Field(default=False, alias='isAnonymous')
    honeypot: Optional[str] = None

    class Config:
        populate_by_name = True


class CommentUpdate(BaseModel):
    approved: Optional[bool] = None
    content: Optional[str] = None


class VoteRequest(BaseModel):
    vote_type: Optional[str] = Field(default=None, alias='voteType')
    email: Optional[str] = None

    class Config:
        populate_by_name = True


class AgentCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, alias='systemPrompt')
    user_prompt: Optional[str] = Field(default=None, alias='userPrompt')
    enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class AgentUpdate(AgentCreate):
    """Partial update; only the fields sent are changed"""


class ExecuteRequest(BaseModel):
    content: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class MultiExecuteRequest(ExecuteRequest):
    agent_ids: List[int] = Field(default_factory=list, alias='agentIds')

    class Config:
        populate_by_name = True


class ExcerptRequest(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    database: str
    total_comments: int
    pending_comments: int


# Request helpers
def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get('x-real-ip')
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return 'unknown'


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get('user-agent')
    )


def get_current_user(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(security)
) -> Optional[Identity]:
    """
    Resolve the caller

    HTTP Basic with the admin credentials gives the admin identity, a Bearer
    token is looked up among user profiles, no credentials is anonymous.
    """
    settings = request.app.state.settings

    if credentials is not None:
        correct_username = secrets.compare_digest(credentials.username, settings.API_USERNAME)
        correct_password = secrets.compare_digest(credentials.password, settings.API_PASSWORD)
        if not (correct_username and correct_password):
            raise AuthError("Credenciales inválidas")
        return Identity(id=credentials.username, email=settings.ADMIN_EMAIL, role=ADMIN_ROLE)

    authorization = request.headers.get('authorization', '')
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() == 'bearer' and token.strip():
        profile = request.app.state.db_manager.get_user_by_token(token.strip())
        if profile is None:
            raise AuthError("Token inválido")
        return Identity(id=profile.id, email=profile.email, role=profile.role)

    return None


def require_admin_user(user: Optional[Identity] = Depends(get_current_user)) -> Identity:
    return require_admin(user)


def submitter_view(comment: CommentRecord) -> dict:
    """Stored comment without audit fields"""
    return comment.model_dump(exclude={'ip_address', 'user_agent'})


def agent_view(agent: AgentRecord) -> dict:
    data = agent.model_dump(exclude={'config'})
    data['config'] = agent.config.to_storage()
    return data


def require_content(content: Optional[str]) -> str:
    if content is None:
        raise ValidationError('El contenido es requerido')
    if not content.strip():
        raise ValidationError('El contenido no puede estar vacío')
    return content


router = APIRouter(prefix="/api")


# Health
@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """API and database health"""
    stats = request.app.state.db_manager.get_statistics()
    return HealthResponse(
        status="healthy",
        database=request.app.state.settings.DB_PATH,
        total_comments=stats['total'],
        pending_comments=stats['pending']
    )


@router.get("/llm/health")
async def llm_health(request: Request):
    """Report whether the LLM backend key is configured, never the key itself"""
    settings = request.app.state.settings
    if not settings.XAI_API_KEY:
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "configured": False,
                "error": "XAI_API_KEY no está configurada",
            }
        )
    return {"status": "ok", "configured": True, "baseUrl": settings.XAI_BASE_URL}


# Comments
@router.post("/comments", status_code=201)
async def submit_comment(
    body: CommentCreate,
    request: Request,
    user: Optional[Identity] = Depends(get_current_user)
):
    """Public comment submission"""
    comment = await request.app.state.moderation.submit_comment(
        CommentSubmission(
            post_id=body.post_id,
            content=body.content,
            author_name=body.author_name,
            author_email=body.author_email,
            author_website=body.author_website,
            parent_id=body.parent_id,
            is_anonymous=body.is_anonymous,
            honeypot=body.honeypot,
        ),
        get_client_info(request),
        user=user
    )
    return submitter_view(comment)


@router.get("/comments", response_model=List[CommentRecord])
async def list_comments(
    request: Request,
    approved: Optional[bool] = None,
    post_id: Optional[int] = Query(default=None, alias='postId'),
    user: Optional[Identity] = Depends(get_current_user)
):
    """Admin listing, newest first"""
    return request.app.state.moderation.list_comments(user, approved=approved, post_id=post_id)


@router.get("/posts/{post_id}/comments")
async def get_post_comments(post_id: int, request: Request):
    """Approved comments of a post as a reply tree"""
    db_manager = request.app.state.db_manager
    if db_manager.get_post(post_id) is None:
        raise NotFoundError('Post no encontrado')
    comments = db_manager.list_comments(approved=True, post_id=post_id)
    return build_comment_tree(comments)


@router.put("/comments/{comment_id}", response_model=CommentRecord)
async def update_comment(
    comment_id: int,
    body: CommentUpdate,
    request: Request,
    user: Optional[Identity] = Depends(get_current_user)
):
    """Admin approve, reject or edit"""
    return request.app.state.moderation.update_comment(
        comment_id, user, approved=body.approved, content=body.content
    )


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: int,
    request: Request,
    user: Optional[Identity] = Depends(get_current_user)
):
    request.app.state.moderation.delete_comment(comment_id, user)
    return {"success": True}


@router.post("/comments/{comment_id}/vote")
async def vote_comment(
    comment_id: int,
    body: VoteRequest,
    request: Request,
    user: Optional[Identity] = Depends(get_current_user)
):
    """Toggle an upvote or downvote"""
    voter = VoterIdentity.resolve(user, get_client_ip(request), body.email)
    outcome = request.app.state.moderation.vote(comment_id, body.vote_type, voter)
    return {
        "success": True,
        "action": outcome.action,
        "voteType": outcome.vote_type,
        "upvotes": outcome.upvotes,
        "downvotes": outcome.downvotes,
    }


@router.get("/comments/{comment_id}/vote")
async def get_vote(
    comment_id: int,
    request: Request,
    email: Optional[str] = None,
    user: Optional[Identity] = Depends(get_current_user)
):
    voter = VoterIdentity.resolve(user, get_client_ip(request), email)
    return {"voteType": request.app.state.moderation.get_vote(comment_id, voter)}


# AI agents
@router.get("/ai-agents")
async def list_agents(request: Request, admin: Identity = Depends(require_admin_user)):
    return [agent_view(agent) for agent in request.app.state.registry.list_agents()]


@router.get("/ai-agents/defaults")
async def get_agent_defaults(admin: Identity = Depends(require_admin_user)):
    """Built-in presets and the agent types they cover"""
    return {"types": AGENT_TYPES, "prompts": DEFAULT_PROMPTS}


@router.post("/ai-agents", status_code=201)
async def create_agent(body: AgentCreate, request: Request,
                       admin: Identity = Depends(require_admin_user)):
    agent = request.app.state.registry.create_agent(
        name=body.name,
        type=body.type,
        system_prompt=body.system_prompt,
        user_prompt=body.user_prompt,
        description=body.description,
        enabled=body.enabled,
        config=body.config,
    )
    return agent_view(agent)


@router.post("/ai-agents/execute")
async def execute_agents(body: MultiExecuteRequest, request: Request,
                         admin: Identity = Depends(require_admin_user)):
    """Run several agents concurrently over the same content"""
    content = require_content(body.content)
    if not body.agent_ids:
        raise ValidationError('Selecciona al menos un agente')
    results = await request.app.state.executor.execute_many(body.agent_ids, content, body.context)
    return {"results": {str(agent_id): result.to_dict() for agent_id, result in results.items()}}


@router.get("/ai-agents/{agent_id}")
async def get_agent(agent_id: int, request: Request, admin: Identity = Depends(require_admin_user)):
    return agent_view(request.app.state.registry.get_agent(agent_id))


@router.put("/ai-agents/{agent_id}")
async def update_agent(agent_id: int, body: AgentUpdate, request: Request,
                       admin: Identity = Depends(require_admin_user)):
    agent = request.app.state.registry.update_agent(agent_id, body.model_dump(exclude_unset=True))
    return agent_view(agent)


@router.delete("/ai-agents/{agent_id}")
async def delete_agent(agent_id: int, request: Request, admin: Identity = Depends(require_admin_user)):
    request.app.state.registry.delete_agent(agent_id)
    return {"success": True}


@router.post("/ai-agents/{agent_id}/execute")
async def execute_agent(agent_id: int, body: ExecuteRequest, request: Request,
                        admin: Identity = Depends(require_admin_user)):
    """Run one agent; the status code follows the error category"""
    content = require_content(body.content)
    result = await request.app.state.executor.execute(agent_id, content, body.context)
    return JSONResponse(status_code=result.status_code, content=result.to_dict())


# Posts
@router.post("/posts/generate-excerpt")
async def create_excerpt(body: ExcerptRequest, request: Request,
                         admin: Identity = Depends(require_admin_user)):
    content = require_content(body.content)
    excerpt = await generate_excerpt(
        request.app.state.llm_backend,
        content,
        title=body.title,
        model=request.app.state.settings.LLM_DEFAULT_MODEL
    )
    return {"excerpt": excerpt}


# Error rendering
async def handle_blog_error(request: Request, exc: BlogError):
    headers = {"WWW-Authenticate": "Basic"} if type(exc) is AuthError else None
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    logger.info(f"Invalid request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Datos de la solicitud inválidos"})


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
    error = UnknownError("Error interno del servidor")
    return JSONResponse(status_code=error.status_code, content={"error": error.message})


def create_app(settings=Settings, db_manager: Optional[DatabaseManager] = None,
               llm_backend=None, notifier: Optional[Notifier] = None) -> FastAPI:
    """
    Build the API application and its services

    Args:
        settings: Settings class (or subclass) to read configuration from
        db_manager: Store to use instead of one opened at settings.DB_PATH
        llm_backend: Backend with an async complete() used instead of GrokClient
        notifier: Notification sink used instead of one built from settings
    """
    if db_manager is None:
        db_manager = DatabaseManager(settings.DB_PATH)
        db_manager.init_db()
    if notifier is None:
        notifier = Notifier(db_manager, settings.BOT_TOKEN, settings.ALERT_CHAT_ID)
    if llm_backend is None:
        llm_backend = GrokClient(**settings.get_llm_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await notifier.start()
        logger.info(f"API ready (database: {settings.DB_PATH})")
        yield
        await notifier.close()

    app = FastAPI(
        title="Blog Back Office API",
        description="Comment moderation and AI agents for the blog",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db_manager = db_manager
    app.state.notifier = notifier
    app.state.llm_backend = llm_backend
    app.state.moderation = CommentModerationService(
        db_manager,
        RateGuard(db_manager),
        notifier=notifier,
        blocked_terms=settings.get_blocked_terms(),
        spam_threshold=settings.SPAM_THRESHOLD,
        auto_approve_min=settings.AUTO_APPROVE_MIN_APPROVED
    )
    app.state.registry = AgentRegistry(db_manager)
    app.state.executor = AgentExecutor(
        db_manager,
        llm_backend,
        timeout=settings.AGENT_EXECUTION_TIMEOUT,
        default_model=settings.LLM_DEFAULT_MODEL
    )

    app.add_exception_handler(BlogError, handle_blog_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    Settings.load()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info(f"Starting API server on {Settings.API_HOST}:{Settings.API_PORT}")
    logger.info(f"Database: {Settings.DB_PATH}")
    logger.info(f"API Username: {Settings.API_USERNAME}")

    uvicorn.run(
        "api_server:create_app",
        factory=True,
        host=Settings.API_HOST,
        port=Settings.API_PORT,
        reload=False,
        log_level="info"
    )
