"""
Configuration Management for SQL Repair Agent
Uses Pydantic for validation and type safety
"""
from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator


class DatabaseType(str, Enum):
    """Supported database types"""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    ORACLE = "oracle"


class LLMProvider(str, Enum):
    """Supported LLM providers"""
    BEDROCK_CLAUDE = "bedrock_claude"


class LogLevel(str, Enum):
    """Log levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


DEFAULT_PORTS = {
    DatabaseType.SQLITE: 0,
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.MYSQL: 3306,
    DatabaseType.ORACLE: 1521,
}


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class DatabaseConfig(BaseModel):
    """
    Database connection and schema filtering configuration

    ``connection_string`` is passed to the driver as-is when set: a file path
    for SQLite, a libpq DSN or URI for PostgreSQL, an Easy Connect string for
    Oracle. MySQL always connects with the discrete host/port fields.
    """
    db_type: DatabaseType
    connection_string: Optional[SecretStr] = None
    host: str = "localhost"
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    database: str = ""
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    connection_timeout: int = Field(default=30, ge=1, le=300)
    ssl_enabled: bool = False
    ssl_ca_path: Optional[str] = None

    # Oracle specific
    oracle_service_name: Optional[str] = None

    # Schema filtering, schema-qualified names ("schema.table",
    # "schema.table.column") or bare column names
    included_tables: List[str] = Field(default_factory=list)
    excluded_tables: List[str] = Field(default_factory=list)
    excluded_columns: List[str] = Field(default_factory=list)

    @field_validator("included_tables", "excluded_tables", "excluded_columns", mode="before")
    @classmethod
    def normalize_name_list(cls, v: Any) -> List[str]:
        """Accept comma-separated strings and drop blanks and duplicates"""
        if v is None:
            return []
        if isinstance(v, str):
            v = _split_list(v)
        seen = set()
        names = []
        for item in v:
            name = str(item).strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
        return names

    def get_port(self) -> int:
        """Get configured port or the default for the database type"""
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(DatabaseType(self.db_type), 0)

    model_config = {"use_enum_values": True}


class LLMConfig(BaseModel):
    """LLM configuration for Bedrock Claude"""
    provider: LLMProvider = LLMProvider.BEDROCK_CLAUDE
    model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[SecretStr] = None
    aws_secret_access_key: Optional[SecretStr] = None
    aws_session_token: Optional[SecretStr] = None
    max_tokens: int = Field(default=2048, ge=100, le=100000)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay: float = Field(default=1.0, ge=0.0, le=30.0)
    request_timeout: int = Field(default=120, ge=10, le=600)

    model_config = {"use_enum_values": True}


class AgentConfig(BaseModel):
    """Repair loop configuration"""
    max_retries: int = Field(default=3, ge=0, le=20)
    domain_hints: List[str] = Field(default_factory=list)
    retry_model_errors: bool = False
    system_message: Optional[str] = None


class MetricsConfig(BaseModel):
    """Metrics configuration"""
    enabled: bool = True


class SystemConfig(BaseModel):
    """Main system configuration"""
    database: DatabaseConfig
    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "SystemConfig":
        """Create configuration from environment variables (and a .env file if present)"""
        load_dotenv(env_file)

        db_config = DatabaseConfig(
            db_type=DatabaseType(os.getenv("DB_TYPE", "sqlite")),
            connection_string=SecretStr(os.environ["DB_CONNECTION_STRING"]) if os.getenv("DB_CONNECTION_STRING") else None,
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.environ["DB_PORT"]) if os.getenv("DB_PORT") else None,
            database=os.getenv("DB_NAME", ""),
            username=os.getenv("DB_USER"),
            password=SecretStr(os.environ["DB_PASSWORD"]) if os.getenv("DB_PASSWORD") else None,
            oracle_service_name=os.getenv("ORACLE_SERVICE_NAME"),
            included_tables=_split_list(os.getenv("DB_INCLUDED_TABLES")),
            excluded_tables=_split_list(os.getenv("DB_EXCLUDED_TABLES")),
            excluded_columns=_split_list(os.getenv("DB_EXCLUDED_COLUMNS")),
        )

        llm_config = LLMConfig(
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            model_id=os.getenv("BEDROCK_MODEL_ID", "anthropic.claude-3-5-sonnet-20241022-v2:0"),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2048")),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.0")),
        )

        agent_config = AgentConfig(
            max_retries=int(os.getenv("AGENT_MAX_RETRIES", "3")),
            retry_model_errors=os.getenv("AGENT_RETRY_MODEL_ERRORS", "false").lower() == "true",
        )

        return cls(
            database=db_config,
            llm=llm_config,
            agent=agent_config,
            log_level=LogLevel(os.getenv("LOG_LEVEL", "INFO")),
            json_logs=os.getenv("LOG_JSON", "false").lower() == "true",
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SystemConfig":
        """
        Create configuration from a YAML file

        The file mirrors the model layout::

            database:
              db_type: postgresql
              connection_string: "host=localhost dbname=shop"
              excluded_tables: [public.audit_log]
            agent:
              max_retries: 2
              domain_hints:
                - "orders.status: 1 = open, 2 = shipped, 3 = cancelled"
        """
        with open(path, "r", encoding="utf-8") as fh:
            data: Dict[str, Any] = yaml.safe_load(fh) or {}
        return cls.model_validate(data)

    model_config = {"use_enum_values": True}


# Global configuration instance
_config: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = SystemConfig.from_env()
    return _config


def set_config(config: SystemConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance"""
    global _config
    _config = None
