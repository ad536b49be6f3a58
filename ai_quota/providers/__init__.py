from .base import BaseProvider
from .claude import ClaudeProvider
from .codex import CodexProvider
from .copilot import CopilotProvider
from .gemini import GeminiProvider, OAuthClientCache

PROVIDERS: dict[str, type[BaseProvider]] = {
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
    "copilot": CopilotProvider,
    "codex": CodexProvider,
}

__all__ = [
    "BaseProvider",
    "ClaudeProvider",
    "CodexProvider",
    "CopilotProvider",
    "GeminiProvider",
    "OAuthClientCache",
    "PROVIDERS",
]
