"""
AI agent execution engine

Loads an agent snapshot, renders its user prompt, races the backend call
against a hard deadline and records successful executions. Every outcome
is returned as an AgentResult; nothing in execute() raises.
"""
import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from agents.defaults import CONTENT_PLACEHOLDER
from agents.llm_client import DEFAULT_MODEL, LLMBackendError
from database.db_manager import DatabaseManager
from exceptions import (
    BlogError, ValidationError, NotFoundError, ConfigurationError, AgentTimeoutError,
    BackendUnavailableError, UnknownError
)

logger = logging.getLogger(__name__)

EXECUTION_TIMEOUT = 55.0

# Execution records keep at most this much text
MAX_STORED_CONTENT = 10000
MAX_STORED_RESULT = 50000

EXCERPT_SYSTEM_PROMPT = (
    "Eres un experto en crear resúmenes concisos y atractivos para posts de blog.\n"
    "Crea un resumen breve (2-3 oraciones máximo, 150-200 caracteres) que capture la esencia del contenido.\n"
    "El resumen debe ser claro, interesante y hacer que el lector quiera leer el post completo.\n"
    "No uses comillas ni signos de puntuación innecesarios."
)
EXCERPT_MAX_TOKENS = 200


class ErrorCategory(Enum):
    """Failure class of an execution, used to pick the hint shown to the editor"""
    TIMEOUT = 'timeout'
    CONFIGURATION = 'configuration'
    CONNECTION = 'connection'
    RATE_LIMITED = 'rate_limited'
    NOT_FOUND = 'not_found'
    DISABLED = 'disabled'
    UNKNOWN = 'unknown'


CATEGORY_ERRORS = {
    ErrorCategory.TIMEOUT: AgentTimeoutError,
    ErrorCategory.CONFIGURATION: ConfigurationError,
    ErrorCategory.CONNECTION: BackendUnavailableError,
    ErrorCategory.RATE_LIMITED: BackendUnavailableError,
    ErrorCategory.NOT_FOUND: NotFoundError,
    ErrorCategory.DISABLED: ValidationError,
    ErrorCategory.UNKNOWN: UnknownError,
}

CATEGORY_MESSAGES = {
    ErrorCategory.TIMEOUT: 'La solicitud tardó demasiado. Intenta con menos contenido o verifica tu conexión.',
    ErrorCategory.CONFIGURATION: 'Error de configuración: XAI_API_KEY no está configurada correctamente.',
    ErrorCategory.CONNECTION: 'Error de conexión con el servicio de IA. Intenta de nuevo en unos minutos.',
    ErrorCategory.RATE_LIMITED: 'El servicio de IA está saturado. Intenta de nuevo en unos minutos.',
}


def classify_error(error: Exception) -> ErrorCategory:
    """
    Map a backend or engine failure to its category

    Auth rejections by the backend (401/403) are operator-side key problems
    and share the configuration category with a missing key.
    """
    if isinstance(error, (AgentTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, ConfigurationError):
        return ErrorCategory.CONFIGURATION

    if isinstance(error, LLMBackendError):
        if error.kind == 'timeout':
            return ErrorCategory.TIMEOUT
        if error.kind == 'connection':
            return ErrorCategory.CONNECTION
        if error.status_code in (401, 403):
            return ErrorCategory.CONFIGURATION
        if error.status_code == 429:
            return ErrorCategory.RATE_LIMITED
        if error.status_code and error.status_code >= 500:
            return ErrorCategory.CONNECTION
        return ErrorCategory.UNKNOWN

    if isinstance(error, ConnectionError):
        return ErrorCategory.CONNECTION
    return ErrorCategory.UNKNOWN


def describe_error(category: ErrorCategory, error: Optional[Exception] = None) -> str:
    """Editor-facing message for a failure"""
    if category in CATEGORY_MESSAGES:
        return CATEGORY_MESSAGES[category]
    if error is not None and str(error):
        return str(error)
    return 'Error desconocido al ejecutar el agente'


def to_blog_error(error: Exception) -> BlogError:
    """Wrap a backend failure into the error class the API layer renders"""
    if isinstance(error, BlogError):
        return error
    category = classify_error(error)
    return CATEGORY_ERRORS[category](describe_error(category, error))


def render_prompt(template: Optional[str], content: str, context: Optional[Dict[str, Any]] = None) -> str:
    """
    Substitute {{content}} and then every {{key}} present in context

    Placeholders without a value are left as they are.
    """
    rendered = (template or CONTENT_PLACEHOLDER).replace(CONTENT_PLACEHOLDER, content)
    for key, value in (context or {}).items():
        rendered = rendered.replace('{{' + str(key) + '}}', str(value))
    return rendered


@dataclass
class AgentResult:
    """Normalized outcome of one agent execution"""
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    category: Optional[ErrorCategory] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, category: ErrorCategory, message: str) -> 'AgentResult':
        return cls(success=False, error=message, category=category)

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return CATEGORY_ERRORS[self.category or ErrorCategory.UNKNOWN].status_code

    def to_dict(self) -> dict:
        if self.success:
            return {'success': True, 'result': self.result, 'metadata': self.metadata}
        return {
            'success': False,
            'error': self.error,
            'category': (self.category or ErrorCategory.UNKNOWN).value,
        }


class AgentExecutor:
    """Runs agent presets against content through an LLM backend"""

    def __init__(self, db_manager: DatabaseManager, backend, timeout: float = EXECUTION_TIMEOUT,
                 default_model: str = DEFAULT_MODEL):
        """
        Initialize executor

        Args:
            db_manager: DatabaseManager instance
            backend: Object with an async complete(system_prompt, user_prompt,
                model, temperature, max_tokens) method
            timeout: Hard deadline for the backend call, in seconds
            default_model: Model used when the agent config does not name one
        """
        self.db_manager = db_manager
        self.backend = backend
        self.timeout = timeout
        self.default_model = default_model

    async def execute(self, agent_id: int, content: str,
                      extra_context: Optional[Dict[str, Any]] = None) -> AgentResult:
        """
        Execute one agent against content

        Args:
            agent_id: Agent to run
            content: Raw content substituted for {{content}}
            extra_context: Values for the other {{key}} placeholders

        Returns:
            AgentResult with the completion or a categorized error
        """
        execution_id = f"agent-{agent_id}-{int(time.time() * 1000)}"
        prefix = f"[AI Agent {execution_id}]"
        started = time.monotonic()

        logger.info(
            f"{prefix} Starting execution (content_length={len(content)}, "
            f"has_context={bool(extra_context)})"
        )

        try:
            agent = self.db_manager.get_agent(agent_id)
        except Exception as e:
            logger.error(f"{prefix} Database error loading agent: {e}", exc_info=True)
            return AgentResult.failure(ErrorCategory.UNKNOWN, f'Error al buscar el agente: {e}')

        if agent is None:
            logger.error(f"{prefix} Agent not found")
            return AgentResult.failure(ErrorCategory.NOT_FOUND, 'Agente no encontrado')
        if not agent.enabled:
            logger.error(f"{prefix} Agent disabled: {agent.name}")
            return AgentResult.failure(ErrorCategory.DISABLED, 'El agente está deshabilitado')

        user_prompt = render_prompt(agent.user_prompt, content, extra_context)
        model = agent.config.model or self.default_model

        logger.info(
            f"{prefix} Calling backend (agent={agent.name}, type={agent.type}, model={model}, "
            f"temperature={agent.config.temperature}, max_tokens={agent.config.max_tokens}, "
            f"user_prompt_length={len(user_prompt)})"
        )

        call_started = time.monotonic()
        try:
            result = await self._complete_with_deadline(
                prefix,
                agent.system_prompt,
                user_prompt,
                model,
                agent.config.temperature,
                agent.config.max_tokens
            )
        except Exception as e:
            category = classify_error(e)
            logger.error(
                f"{prefix} Execution failed after {self._elapsed_ms(started):.0f}ms "
                f"({category.value}, {type(e).__name__}): {e}"
            )
            return AgentResult.failure(category, describe_error(category, e))

        logger.info(
            f"{prefix} Backend call successful in {self._elapsed_ms(call_started):.0f}ms "
            f"(result_length={len(result)})"
        )

        self._save_execution(prefix, agent.id, content, result, model, extra_context,
                             self._elapsed_ms(started))

        logger.info(f"{prefix} Execution completed in {self._elapsed_ms(started):.0f}ms")
        return AgentResult(
            success=True,
            result=result,
            metadata={'agentName': agent.name, 'agentType': agent.type}
        )

    async def execute_many(self, agent_ids: List[int], content: str,
                           extra_context: Optional[Dict[str, Any]] = None) -> Dict[int, AgentResult]:
        """Run several agents concurrently over the same content"""
        results = await asyncio.gather(
            *(self.execute(agent_id, content, extra_context) for agent_id in agent_ids)
        )
        return dict(zip(agent_ids, results))

    async def _complete_with_deadline(self, prefix: str, system_prompt: str, user_prompt: str,
                                      model: str, temperature: Optional[float],
                                      max_tokens: Optional[int]) -> str:
        """
        Race the backend call against the deadline timer

        The losing backend call is left running; its outcome is only logged.
        """
        call = asyncio.ensure_future(
            self.backend.complete(system_prompt, user_prompt, model, temperature, max_tokens)
        )
        timer = asyncio.ensure_future(asyncio.sleep(self.timeout))

        done, _ = await asyncio.wait({call, timer}, return_when=asyncio.FIRST_COMPLETED)

        if call in done:
            timer.cancel()
            return call.result()

        logger.error(f"{prefix} Timeout after {self.timeout:g}s")
        call.add_done_callback(functools.partial(self._log_abandoned_call, prefix))
        raise AgentTimeoutError(CATEGORY_MESSAGES[ErrorCategory.TIMEOUT])

    @staticmethod
    def _log_abandoned_call(prefix: str, task: asyncio.Future):
        if task.cancelled():
            logger.warning(f"{prefix} Abandoned backend call was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"{prefix} Abandoned backend call failed: {error}")
        else:
            logger.warning(f"{prefix} Abandoned backend call finished after the deadline, result discarded")

    def _save_execution(self, prefix: str, agent_id: int, content: str, result: str, model: str,
                        extra_context: Optional[Dict[str, Any]], duration_ms: float):
        metadata = {
            'model': model,
            'contentLength': len(content),
            'resultLength': len(result),
            **(extra_context or {}),
        }
        try:
            self.db_manager.save_execution(
                agent_id=agent_id,
                content=content[:MAX_STORED_CONTENT],
                result=result[:MAX_STORED_RESULT],
                metadata=metadata,
                duration_ms=duration_ms
            )
            logger.debug(f"{prefix} Execution record saved")
        except Exception as e:
            logger.error(f"{prefix} Failed to save execution record: {e}")

    @staticmethod
    def _elapsed_ms(since: float) -> float:
        return (time.monotonic() - since) * 1000


async def generate_excerpt(backend, content: str, title: Optional[str] = None,
                           model: str = DEFAULT_MODEL) -> str:
    """
    Ask the backend for a 2-3 sentence summary of a post

    Raises:
        BlogError subclass matching the failure category
    """
    if title:
        user_prompt = f"Título: {title}\n\nContenido:\n{content}\n\nCrea un resumen conciso:"
    else:
        user_prompt = f"Contenido:\n{content}\n\nCrea un resumen conciso:"

    try:
        excerpt = await backend.complete(EXCERPT_SYSTEM_PROMPT, user_prompt, model, 0.7, EXCERPT_MAX_TOKENS)
    except Exception as e:
        logger.error(f"Error generating excerpt: {e}")
        raise to_blog_error(e) from e
    return excerpt.strip()
