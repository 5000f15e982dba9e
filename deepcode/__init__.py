"""deepcode - an agentic conversation driver with local tool execution."""

__version__ = "0.1.0"

from deepcode.config import Config
from deepcode.session_manager import SessionManager, UserPrompt

__all__ = ["Config", "SessionManager", "UserPrompt", "__version__"]
