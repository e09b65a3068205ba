"""
Shared configuration for the slide orchestration services.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Load environment variables from the project .env, regardless of CWD
base_dir = Path(__file__).resolve().parents[2]
dotenv_path = base_dir / ".env"
example_path = base_dir / "env.example"

if dotenv_path.exists():
    load_dotenv(dotenv_path, override=True)
    logger.debug("✅ Loaded environment variables from %s", dotenv_path)
else:
    discovered = find_dotenv(usecwd=True)
    if discovered:
        load_dotenv(discovered, override=True)
        logger.debug("✅ Loaded environment variables from %s", discovered)
    elif example_path.exists():
        # Sample values never override real environment values
        load_dotenv(example_path, override=False)
        logger.debug("✅ Loaded environment variables from sample %s", example_path)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # API Keys - explicitly map environment variables
    openai_api_key: Optional[str] = Field(default=None, alias='OPENAI_API_KEY')
    openai_base_url: Optional[str] = Field(default=None, alias='OPENAI_BASE_URL')
    anthropic_api_key: Optional[str] = Field(default=None, alias='ANTHROPIC_API_KEY')

    # Local inference server (Ollama-compatible)
    local_inference_url: str = Field(default="http://localhost:11434", alias='LOCAL_INFERENCE_URL')
    enable_ollama_models: bool = Field(default=False, alias='ENABLE_OLLAMA_MODELS')
    enable_simulated_backend: bool = Field(default=False, alias='ENABLE_SIMULATED_BACKEND')

    # Service Configuration
    service_name: str = Field(default="slide-orchestrator", alias='SERVICE_NAME')
    service_port: int = Field(default=8010, alias='SERVICE_PORT')
    debug: bool = Field(default=False, alias='DEBUG')

    # Logging
    log_level: str = Field(default="INFO", alias='LOG_LEVEL')

    # Routing
    default_policy: str = Field(default="balanced", alias='DEFAULT_POLICY')
    balanced_quality_weight: float = Field(default=0.4, alias='BALANCED_QUALITY_WEIGHT')
    balanced_speed_weight: float = Field(default=0.3, alias='BALANCED_SPEED_WEIGHT')
    balanced_cost_weight: float = Field(default=0.3, alias='BALANCED_COST_WEIGHT')

    # Agent execution
    agent_timeout_seconds: float = Field(default=30.0, alias='AGENT_TIMEOUT_SECONDS')
    agent_max_retries: int = Field(default=3, alias='AGENT_MAX_RETRIES')
    retry_base_delay: float = Field(default=1.0, alias='RETRY_BASE_DELAY')
    task_history_limit: int = Field(default=500, alias='TASK_HISTORY_LIMIT')

    # Research stage
    research_min_confidence: float = Field(default=0.6, alias='RESEARCH_MIN_CONFIDENCE')
    research_max_snippets: int = Field(default=20, alias='RESEARCH_MAX_SNIPPETS')

    # API surface
    rate_limit_per_hour: int = Field(default=10, alias='RATE_LIMIT_PER_HOUR')

    class Config:
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True  # Allow both field name and alias
        extra = "ignore"

    def __init__(self, **data):
        super().__init__(**data)
        # Service-specific port wins over the generic one
        if os.getenv('ORCHESTRATOR_PORT'):
            self.service_port = int(os.getenv('ORCHESTRATOR_PORT'))


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the current settings instance."""
    return settings


def debug_settings(current: Optional[Settings] = None) -> None:
    """Log which credentials and knobs are active."""
    current = current or get_settings()
    logger.info("🔍 Current Settings:")
    logger.info("  OpenAI API Key: %s", "✅ Set" if current.openai_api_key else "❌ Not set")
    logger.info("  Anthropic API Key: %s", "✅ Set" if current.anthropic_api_key else "❌ Not set")
    logger.info("  Local inference: %s (ollama catalog: %s)", current.local_inference_url, current.enable_ollama_models)
    logger.info("  Default policy: %s", current.default_policy)
    logger.info("  Agent timeout: %ss, retries: %s", current.agent_timeout_seconds, current.agent_max_retries)
    logger.info("  Service: %s on port %s", current.service_name, current.service_port)
    logger.info("  Debug: %s", current.debug)
    logger.info("  Log Level: %s", current.log_level)
