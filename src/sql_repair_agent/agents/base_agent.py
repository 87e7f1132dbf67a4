"""
Base Agent Module
Defines abstract base class for agents that complete a conversation with the LLM
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, Optional, TypeVar
import threading
import uuid

from ..config import AgentConfig, LLMConfig
from ..llm_client import BaseLLMClient, LLMResponse, get_llm_client
from ..schemas import Conversation
from ..utils import get_logger

logger = get_logger(__name__)

# Type variable for generic agent output
OutputType = TypeVar('OutputType')


@dataclass
class AgentMetadata:
    """Cumulative metadata across every execution of one agent instance"""
    agent_name: str
    agent_version: str = "1.0.0"
    execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    iteration_count: int = 0
    token_usage: Dict[str, int] = field(default_factory=lambda: {"input": 0, "output": 0})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "agent_version": self.agent_version,
            "execution_id": self.execution_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "iteration_count": self.iteration_count,
            "token_usage": self.token_usage,
        }


class BaseAgent(ABC, Generic[OutputType]):
    """
    Abstract base class for agents

    Implements Template Method pattern for one model round trip:
    submit the conversation, parse the completion, validate the result.
    """

    def __init__(
        self,
        name: str,
        llm_config: LLMConfig,
        agent_config: AgentConfig,
        llm_client: Optional[BaseLLMClient] = None,
    ):
        self.name = name
        self.llm_config = llm_config
        self.agent_config = agent_config
        self._llm_client = llm_client
        self._lock = threading.Lock()
        self._metadata = AgentMetadata(agent_name=name)

    @property
    def llm_client(self) -> BaseLLMClient:
        """Get or create LLM client (lazy initialization)"""
        if self._llm_client is None:
            with self._lock:
                if self._llm_client is None:
                    self._llm_client = get_llm_client(self.llm_config)
        return self._llm_client

    @abstractmethod
    def _parse_response(self, response: LLMResponse) -> OutputType:
        """Parse LLM response into output type"""

    @abstractmethod
    def _validate_output(self, output: OutputType) -> bool:
        """Validate the agent output"""

    def _handle_validation_failure(self, output: OutputType) -> OutputType:
        """
        Handle validation failure (override for custom behavior)

        Default implementation returns output unchanged
        """
        return output

    def execute(self, conversation: Conversation) -> OutputType:
        """
        Execute one model round trip

        Raises:
            ModelUnavailableError: The model did not produce a completion
        """
        llm_client = self.llm_client
        started_at = datetime.utcnow()
        with self._lock:
            self._metadata.started_at = started_at
            self._metadata.iteration_count += 1
            iteration = self._metadata.iteration_count

        logger.debug("Starting agent execution", extra={"extra_fields": {
            "agent": self.name,
            "execution_id": self._metadata.execution_id,
            "iteration": iteration,
            "turns": len(conversation),
        }})

        try:
            llm_response = llm_client.complete_with_retry(conversation)
        finally:
            completed_at = datetime.utcnow()
            with self._lock:
                self._metadata.completed_at = completed_at

        with self._lock:
            self._metadata.token_usage["input"] += llm_response.input_tokens
            self._metadata.token_usage["output"] += llm_response.output_tokens

        output = self._parse_response(llm_response)
        if not self._validate_output(output):
            output = self._handle_validation_failure(output)

        logger.debug("Agent execution completed", extra={"extra_fields": {
            "agent": self.name,
            "execution_id": self._metadata.execution_id,
            "duration_ms": (completed_at - started_at).total_seconds() * 1000,
        }})

        return output

    def get_metadata(self) -> AgentMetadata:
        """Get agent execution metadata"""
        return self._metadata

    def reset_metadata(self) -> None:
        """Reset metadata for new execution"""
        self._metadata = AgentMetadata(agent_name=self.name)
