"""Scoring provider abstraction layer."""

from ..config import AiConfig
from ..errors import ConfigurationError
from .base import ProviderHealth, ScoringContext, ScoringProvider, parse_score_response, parse_summary_response
from .claude import ClaudeProvider
from .gemini import GeminiProvider
from .kiro import KiroProvider

_PROVIDERS: dict[str, type[ScoringProvider]] = {
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
    "kiro": KiroProvider,
}


def create_provider(
    ai_config: AiConfig,
    env: dict[str, str] | None = None,
) -> ScoringProvider:
    """Factory function to create scoring providers.

    Args:
        ai_config: Backend selection and model settings
        env: Environment variables to pass to the backend

    Returns:
        ScoringProvider instance

    Raises:
        ConfigurationError: If the provider is not supported
    """
    provider_cls = _PROVIDERS.get(ai_config.provider)
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported provider: {ai_config.provider}")
    return provider_cls(model=ai_config.model, cli_path=ai_config.cli_path, env=env)


__all__ = [
    "ScoringProvider",
    "ScoringContext",
    "ProviderHealth",
    "ClaudeProvider",
    "GeminiProvider",
    "KiroProvider",
    "create_provider",
    "parse_score_response",
    "parse_summary_response",
]
