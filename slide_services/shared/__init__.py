"""
Shared configuration, models and LLM clients for the slide services.
"""

__version__ = "0.1.0"

# Convenience re-exports
from .config import Settings, get_settings, settings  # noqa: F401
from .errors import *  # noqa: F401,F403
from .models import *  # noqa: F401,F403
