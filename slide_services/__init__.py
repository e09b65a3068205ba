"""
Multi-agent slide deck orchestration services.
"""

__version__ = "0.1.0"
