"""
LLM Client Package

Provides conversation completion against AWS Bedrock Claude models through
the boto3 ``bedrock-runtime`` client.
"""
from .bedrock_client import (
    LLMResponse,
    BaseLLMClient,
    BedrockClaudeClient,
    LLMClientFactory,
    get_llm_client,
)

__all__ = [
    # Data models
    "LLMResponse",

    # Base class
    "BaseLLMClient",

    # Client implementations
    "BedrockClaudeClient",

    # Factory
    "LLMClientFactory",

    # Convenience functions
    "get_llm_client",
]
