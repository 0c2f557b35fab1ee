"""
CRUD over AI agent presets
"""
import logging
from typing import Optional, List

from pydantic import ValidationError as PydanticValidationError

from agents.defaults import DEFAULT_PROMPTS, CONTENT_PLACEHOLDER, get_default_prompt
from database.db_manager import DatabaseManager
from database.schemas import AgentConfig, AgentRecord
from exceptions import ValidationError, NotFoundError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'description', 'type', 'system_prompt', 'user_prompt', 'enabled', 'config')


def validate_config(config: Optional[dict]) -> Optional[dict]:
    """
    Check model settings and normalize them for storage

    Raises:
        ValidationError: temperature outside [0, 2] or non-positive maxTokens
    """
    if not config:
        return None
    try:
        return AgentConfig.model_validate(config).to_storage() or None
    except PydanticValidationError as e:
        fields = ', '.join(str(err['loc'][0]) for err in e.errors() if err.get('loc'))
        raise ValidationError(f'Configuración del agente inválida: {fields}') from e


class AgentRegistry:
    """Admin-side management of agent presets"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def list_agents(self, enabled: Optional[bool] = None) -> List[AgentRecord]:
        return self.db_manager.list_agents(enabled=enabled)

    def get_agent(self, agent_id: int) -> AgentRecord:
        agent = self.db_manager.get_agent(agent_id)
        if agent is None:
            raise NotFoundError('Agente no encontrado')
        return agent

    def create_agent(self, name: Optional[str], type: Optional[str],
                     system_prompt: Optional[str] = None, user_prompt: Optional[str] = None,
                     description: Optional[str] = None, enabled: Optional[bool] = None,
                     config: Optional[dict] = None) -> AgentRecord:
        """
        Create an agent preset

        Missing prompts and description of a known type are taken from the
        built-in presets. The user prompt defaults to the bare content
        placeholder and enabled defaults to true.

        Raises:
            ValidationError: name, type or system prompt missing, or bad config
        """
        preset = get_default_prompt(type) if type else None
        if preset:
            system_prompt = system_prompt or preset['system_prompt']
            user_prompt = user_prompt or preset['user_prompt']
            description = description or preset['description']

        if not (name and name.strip()) or not type or not (system_prompt and system_prompt.strip()):
            raise ValidationError('Nombre, tipo y prompt del sistema son obligatorios')

        agent = self.db_manager.create_agent({
            'name': name.strip(),
            'description': description,
            'type': type,
            'system_prompt': system_prompt,
            'user_prompt': user_prompt or CONTENT_PLACEHOLDER,
            'enabled': True if enabled is None else enabled,
            'config': validate_config(config),
        })
        logger.info(f"AI agent {agent.id} created: {agent.name} ({agent.type})")
        return agent

    def update_agent(self, agent_id: int, updates: dict) -> AgentRecord:
        """
        Apply a partial update; unknown keys are ignored

        Raises:
            NotFoundError: agent does not exist
            ValidationError: a required field is blanked or config is invalid
        """
        changes = {key: value for key, value in updates.items() if key in EDITABLE_FIELDS}

        for field in ('name', 'type', 'system_prompt'):
            if field in changes and not (changes[field] and str(changes[field]).strip()):
                raise ValidationError('Nombre, tipo y prompt del sistema son obligatorios')
        if 'user_prompt' in changes and not changes['user_prompt']:
            changes['user_prompt'] = CONTENT_PLACEHOLDER
        if 'config' in changes:
            changes['config'] = validate_config(changes['config'])

        agent = self.db_manager.update_agent(agent_id, changes)
        if agent is None:
            raise NotFoundError('Agente no encontrado')
        logger.info(f"AI agent {agent_id} updated: {sorted(changes)}")
        return agent

    def delete_agent(self, agent_id: int):
        if not self.db_manager.delete_agent(agent_id):
            raise NotFoundError('Agente no encontrado')
        logger.info(f"AI agent {agent_id} deleted")

    def seed_defaults(self) -> int:
        """
        Create one enabled agent per built-in type on an empty registry

        Returns:
            Number of agents created
        """
        if self.db_manager.list_agents():
            return 0

        for agent_type, preset in DEFAULT_PROMPTS.items():
            self.create_agent(
                name=preset['name'],
                type=agent_type,
                system_prompt=preset['system_prompt'],
                user_prompt=preset['user_prompt'],
                description=preset['description'],
            )
        logger.info(f"Seeded {len(DEFAULT_PROMPTS)} default AI agents")
        return len(DEFAULT_PROMPTS)
