from codelens_core.providers.anthropic import AnthropicProvider
from codelens_core.providers.base import BaseProvider
from codelens_core.providers.openai import OpenAIProvider


def get_provider(config: dict) -> BaseProvider:
    model = config["model"]
    if model == "anthropic":
        return AnthropicProvider(api_key=config["anthropic_api_key"])
    if model == "openai":
        return OpenAIProvider(api_key=config["openai_api_key"])
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")


__all__ = ["AnthropicProvider", "BaseProvider", "OpenAIProvider", "get_provider"]
