"""Configuration management for the prospect data service."""

import os
import re
import yaml
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from pathlib import Path


class CacheConfig(BaseModel):
    """Local (disk) cache configuration."""
    directory: str = "./cache"
    ttl: int = 30 * 24 * 60 * 60
    max_size: str = "1GB"


class SupabaseConfig(BaseModel):
    """Hosted database configuration."""
    url: Optional[str] = Field(default_factory=lambda: os.getenv('SUPABASE_URL'))
    service_role_key: Optional[str] = Field(default_factory=lambda: os.getenv('SUPABASE_SERVICE_ROLE'))
    table: str = "prospect_data_cache"
    enabled: bool = Field(default_factory=lambda: os.getenv('SUPABASE_CACHE_ENABLED', 'true').lower() == 'true')
    # When True the API answers 503 instead of serving from the local cache alone
    required: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.url and self.service_role_key)


class CollectorConfig(BaseModel):
    """Data collector configuration."""
    tool_timeout_ms: int = 60000
    cache_ttl_days: int = 30


class RateLimitConfig(BaseModel):
    """Fixed-window rate limit for the HTTP API."""
    enabled: bool = True
    requests: int = 60
    window_seconds: int = 60
    cleanup_interval_seconds: int = 300
    # Honour X-Forwarded-For only when deployed behind a trusted proxy
    trust_forwarded_for: bool = False


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv('PROSPECT_API_KEY'))
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    log_file: str = "logs/prospect_service.log"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


class Config(BaseModel):
    """Main configuration class."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        from dotenv import load_dotenv
        load_dotenv()  # Load environment variables

        config_file = Path(config_path)

        if not config_file.exists():
            # Return default configuration if file doesn't exist
            return cls()

        with open(config_file, 'r') as f:
            config_content = f.read()

        def replace_env_vars(match):
            env_var = match.group(1)
            return os.getenv(env_var, '')

        config_content = re.sub(r'\$\{([^}]+)\}', replace_env_vars, config_content)
        config_data = yaml.safe_load(config_content) or {}

        return cls.model_validate(_drop_empty(config_data))

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        directories = [
            self.cache.directory,
            Path(self.logging.log_file).parent,
        ]

        for directory in directories:
            Path(directory).mkdir(parents=True, exist_ok=True)


def _drop_empty(data: Any) -> Any:
    """Remove empty values so unset ${VARS} fall back to field defaults."""
    if isinstance(data, dict):
        return {k: _drop_empty(v) for k, v in data.items() if v not in (None, '')}
    return data
