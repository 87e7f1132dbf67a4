"""
LLM Client Module for AWS Bedrock Claude Integration
Provides thread-safe, retry-enabled conversation completion using Boto3
"""
from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import LLMConfig, LLMProvider
from ..schemas import Conversation, Role
from ..utils import ModelUnavailableError, RepairMetrics, get_logger

logger = get_logger(__name__)

# Bedrock error codes worth another try
RETRYABLE_ERROR_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailableException",
    "ModelNotReadyException",
    "ModelTimeoutException",
    "InternalServerException",
}

RETRYABLE_PATTERNS = [
    "throttling",
    "rate limit",
    "too many requests",
    "service unavailable",
    "timeout",
    "connection",
    "temporary",
]


@dataclass
class LLMResponse:
    """LLM response representation"""
    content: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None
    latency_ms: float = 0.0
    raw_response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "model_id": self.model_id,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "stop_reason": self.stop_reason,
            "latency_ms": self.latency_ms,
        }


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients

    Subclasses implement ``complete``; ``complete_with_retry`` wraps it with
    exponential backoff on transient failures.
    """

    model_id: str = "unknown"

    def __init__(self, retry_attempts: int = 3, retry_delay: float = 1.0):
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    @abstractmethod
    def complete(self, conversation: Conversation, **kwargs) -> LLMResponse:
        """
        Submit a conversation and return the model's completion

        Raises:
            ModelUnavailableError: The model did not produce a completion
        """

    def complete_with_retry(
        self,
        conversation: Conversation,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Complete with automatic retry on transient failures

        Uses exponential backoff for retries
        """
        retries = max_retries if max_retries is not None else self.retry_attempts
        last_error = None

        for attempt in range(retries):
            try:
                return self.complete(conversation, **kwargs)
            except ModelUnavailableError as e:
                last_error = e

                if not self._is_retryable_error(e):
                    raise

                if attempt < retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"LLM invocation failed, retrying in {delay}s",
                        extra={"extra_fields": {
                            "attempt": attempt + 1,
                            "max_retries": retries,
                            "error": str(e)
                        }}
                    )
                    time.sleep(delay)

        raise ModelUnavailableError(
            message=f"LLM invocation failed after {retries} attempts",
            model_id=self.model_id,
            original_error=last_error
        )

    def _is_retryable_error(self, error: ModelUnavailableError) -> bool:
        """Check if error is retryable"""
        original = error.original_error
        if original is None:
            return False

        response = getattr(original, "response", None)
        if isinstance(response, dict):
            code = response.get("Error", {}).get("Code")
            if code in RETRYABLE_ERROR_CODES:
                return True

        error_str = str(original).lower()
        return any(pattern in error_str for pattern in RETRYABLE_PATTERNS)

    def health_check(self) -> bool:
        """Check if the model answers a minimal prompt"""
        try:
            response = self.complete(
                Conversation().append(Role.USER, "Say 'OK'"),
                max_tokens=10
            )
            return bool(response.content)
        except ModelUnavailableError as e:
            logger.error(f"Health check failed: {str(e)}")
            return False


class BedrockClaudeClient(BaseLLMClient):
    """
    AWS Bedrock Claude Client
    Thread-safe client for interacting with Claude via AWS Bedrock
    """

    def __init__(self, config: LLMConfig):
        super().__init__(retry_attempts=config.retry_attempts, retry_delay=config.retry_delay)
        self.config = config
        self.model_id = config.model_id
        self._client = None
        self._lock = threading.Lock()

    def _get_client(self):
        """Get or create Boto3 Bedrock client (lazy initialization)"""
        if self._client is None:
            with self._lock:
                if self._client is None:
                    import boto3
                    from botocore.config import Config

                    boto_config = Config(
                        region_name=self.config.aws_region,
                        retries={
                            'max_attempts': 0,  # We handle retries ourselves
                            'mode': 'standard'
                        },
                        connect_timeout=30,
                        read_timeout=self.config.request_timeout,
                    )

                    session_kwargs = {}

                    if self.config.aws_access_key_id:
                        session_kwargs['aws_access_key_id'] = self.config.aws_access_key_id.get_secret_value()
                    if self.config.aws_secret_access_key:
                        session_kwargs['aws_secret_access_key'] = self.config.aws_secret_access_key.get_secret_value()
                    if self.config.aws_session_token:
                        session_kwargs['aws_session_token'] = self.config.aws_session_token.get_secret_value()

                    if session_kwargs:
                        session = boto3.Session(**session_kwargs)
                        self._client = session.client(
                            'bedrock-runtime',
                            config=boto_config
                        )
                    else:
                        self._client = boto3.client(
                            'bedrock-runtime',
                            config=boto_config,
                            region_name=self.config.aws_region
                        )

                    logger.info(
                        "Initialized Bedrock client",
                        extra={"extra_fields": {
                            "region": self.config.aws_region,
                            "model_id": self.config.model_id
                        }}
                    )

        return self._client

    def build_request_body(self, conversation: Conversation, **kwargs) -> Dict[str, Any]:
        """Render a conversation as an Anthropic messages request"""
        messages: List[Dict[str, str]] = [
            {"role": turn.role.value, "content": turn.content}
            for turn in conversation.messages
        ]

        request_body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "top_p": kwargs.get("top_p", self.config.top_p),
            "messages": messages,
        }

        system_prompt = conversation.system_prompt
        if system_prompt:
            request_body["system"] = system_prompt

        return request_body

    def complete(self, conversation: Conversation, **kwargs) -> LLMResponse:
        """
        Invoke Claude via Bedrock

        Args:
            conversation: System turns become the system prompt, the
                remaining turns are sent as messages in order
            **kwargs: max_tokens, temperature or top_p overrides

        Returns:
            LLMResponse with generated content
        """
        request_body = self.build_request_body(conversation, **kwargs)
        start_time = time.time()

        try:
            client = self._get_client()
            response = client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response['body'].read())
        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.error(
                f"LLM invocation failed: {str(e)}",
                extra={"extra_fields": {"latency_ms": latency_ms}}
            )
            raise ModelUnavailableError(
                message=f"Bedrock Claude invocation failed: {str(e)}",
                model_id=self.config.model_id,
                original_error=e
            ) from e

        latency_ms = (time.time() - start_time) * 1000

        content = ""
        for block in response_body.get("content") or []:
            if block.get("type") == "text":
                content += block.get("text", "")

        usage = response_body.get("usage", {})
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)

        RepairMetrics.record_llm_call(
            duration=latency_ms / 1000,
            model_id=self.config.model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens
        )

        logger.debug(
            "LLM invocation successful",
            extra={"extra_fields": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "latency_ms": latency_ms
            }}
        )

        return LLMResponse(
            content=content,
            model_id=self.config.model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=response_body.get("stop_reason"),
            latency_ms=latency_ms,
            raw_response=response_body,
        )


class LLMClientFactory:
    """Factory for creating LLM clients"""

    _clients: Dict[str, BaseLLMClient] = {}
    _lock = threading.Lock()

    @classmethod
    def get_client(cls, config: LLMConfig) -> BaseLLMClient:
        """
        Get or create LLM client instance

        Uses singleton pattern per configuration
        """
        provider = LLMProvider(config.provider)
        key = f"{provider.value}_{config.model_id}_{config.aws_region}"

        if key not in cls._clients:
            with cls._lock:
                if key not in cls._clients:
                    if provider is LLMProvider.BEDROCK_CLAUDE:
                        cls._clients[key] = BedrockClaudeClient(config)
                    else:
                        raise ValueError(f"Unsupported LLM provider: {config.provider}")

        return cls._clients[key]

    @classmethod
    def clear_clients(cls) -> None:
        """Clear all cached clients"""
        with cls._lock:
            cls._clients.clear()


def get_llm_client(config: LLMConfig) -> BaseLLMClient:
    """Get LLM client instance"""
    return LLMClientFactory.get_client(config)
