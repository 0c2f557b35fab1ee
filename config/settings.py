"""
Configuration settings from environment variables
"""
import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load .env file
load_dotenv()

logger = logging.getLogger(__name__)


class Settings:
    """Application settings"""

    # Database
    DB_PATH: str = os.getenv('DB_PATH', 'blog.db')

    # LLM backend (xAI Grok, OpenAI-compatible API)
    XAI_API_KEY: Optional[str] = os.getenv('XAI_API_KEY')
    XAI_BASE_URL: str = os.getenv('XAI_BASE_URL', 'https://api.x.ai/v1')
    LLM_DEFAULT_MODEL: str = os.getenv('LLM_DEFAULT_MODEL', 'grok-4-1-fast-reasoning')
    LLM_REQUEST_TIMEOUT: float = float(os.getenv('LLM_REQUEST_TIMEOUT', '50'))
    LLM_MAX_RETRIES: int = int(os.getenv('LLM_MAX_RETRIES', '2'))
    LLM_RETRY_BASE_DELAY: float = float(os.getenv('LLM_RETRY_BASE_DELAY', '1.0'))
    AGENT_EXECUTION_TIMEOUT: float = float(os.getenv('AGENT_EXECUTION_TIMEOUT', '55'))
    SEED_DEFAULT_AGENTS: bool = False

    # Comment moderation
    SPAM_THRESHOLD: int = int(os.getenv('SPAM_THRESHOLD', '20'))
    SPAM_BLOCKED_TERMS: Optional[str] = None
    AUTO_APPROVE_MIN_APPROVED: int = int(os.getenv('AUTO_APPROVE_MIN_APPROVED', '5'))

    # Optional: Telegram Bot (relay of back office notifications)
    BOT_TOKEN: Optional[str] = os.getenv('BOT_TOKEN')
    ALERT_CHAT_ID: Optional[str] = os.getenv('ALERT_CHAT_ID')

    # Logging
    LOG_DIR: str = os.getenv('LOG_DIR', 'logs')

    # API Server
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    API_USERNAME: str = os.getenv('API_USERNAME', 'admin')
    API_PASSWORD: str = os.getenv('API_PASSWORD', 'changeme')
    ADMIN_EMAIL: str = os.getenv('ADMIN_EMAIL', 'admin@localhost')

    @classmethod
    def load(cls):
        """Load settings from environment"""
        cls.XAI_API_KEY = os.getenv('XAI_API_KEY')
        cls.SPAM_BLOCKED_TERMS = os.getenv('SPAM_BLOCKED_TERMS')
        cls.SEED_DEFAULT_AGENTS = os.getenv('SEED_DEFAULT_AGENTS', '').lower() in ('1', 'true', 'yes')

        spam_threshold = os.getenv('SPAM_THRESHOLD')
        if spam_threshold:
            try:
                cls.SPAM_THRESHOLD = int(spam_threshold)
            except ValueError:
                logger.error("SPAM_THRESHOLD must be a number")

        return cls

    @classmethod
    def get_blocked_terms(cls) -> Optional[dict]:
        """Disallowed-term override as a single custom category, or None for the built-in list"""
        if not cls.SPAM_BLOCKED_TERMS:
            return None
        terms = [term.strip().lower() for term in cls.SPAM_BLOCKED_TERMS.split(',') if term.strip()]
        return {'custom': terms} if terms else None

    @classmethod
    def get_llm_config(cls) -> dict:
        """Get LLM client configuration"""
        return {
            'api_key': cls.XAI_API_KEY,
            'base_url': cls.XAI_BASE_URL,
            'request_timeout': cls.LLM_REQUEST_TIMEOUT,
            'max_retries': cls.LLM_MAX_RETRIES,
            'base_delay': cls.LLM_RETRY_BASE_DELAY,
        }

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """Validate required settings"""
        errors = []

        if cls.SPAM_THRESHOLD <= 0:
            errors.append("SPAM_THRESHOLD must be positive")
        if cls.AUTO_APPROVE_MIN_APPROVED < 0:
            errors.append("AUTO_APPROVE_MIN_APPROVED must not be negative")
        if cls.AGENT_EXECUTION_TIMEOUT <= 0:
            errors.append("AGENT_EXECUTION_TIMEOUT must be positive")
        if cls.LLM_MAX_RETRIES < 0:
            errors.append("LLM_MAX_RETRIES must not be negative")
        if cls.API_PASSWORD == 'changeme':
            logger.warning("API_PASSWORD is the default value, change it in production")
        if not cls.XAI_API_KEY:
            logger.warning("XAI_API_KEY is not set, AI agent executions will fail")

        return len(errors) == 0, errors
