"""
Core configuration module for the LicitaBR bidding-intelligence service.
Loads settings from environment variables (and a local .env file) into
typed configuration sections shared by the API, MCP and N8N tooling.
"""

import os
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    service_name: str = "SIBAL Risk Analyzer"
    version: str = "1.0.0"


@dataclass
class PNCPConfig:
    """PNCP public API configuration"""
    base_url: str = "https://pncp.gov.br/api"
    user_agent: str = "SIBAL-LicitaTracker/1.0"
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1000
    page_size: int = 20

    # "pncp" queries the live API, "mock" serves the bundled sample notices
    notice_source: str = "pncp"


@dataclass
class LLMConfig:
    """Chat relay configuration for OpenAI-compatible providers"""
    default_provider: str = "groq"

    groq_api_key: Optional[str] = None
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.1-8b-instant"

    lovable_api_key: Optional[str] = None
    lovable_base_url: str = "https://ai.gateway.lovable.dev/v1"
    lovable_model: str = "google/gemini-2.5-flash"

    temperature: float = 0.7
    max_tokens: int = 1024
    timeout_seconds: int = 60


@dataclass
class N8NConfig:
    """N8N REST admin API configuration"""
    base_url: str = "http://localhost:5678"
    api_key: Optional[str] = None
    mcp_workflow_name: str = "MCP Server"
    webhook_path: str = "mcp"
    timeout_seconds: int = 30


@dataclass
class SecurityConfig:
    """Authentication for the MCP and chat endpoints"""
    api_key: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None


@dataclass
class MonitoringConfig:
    """Logging and metrics configuration"""
    log_level: str = "INFO"
    log_format: str = "plain"
    enable_metrics: bool = True


class Config:
    """Main configuration class that loads all settings from the environment"""

    def __init__(self):
        self.server = ServerConfig()
        self.pncp = PNCPConfig()
        self.llm = LLMConfig()
        self.n8n = N8NConfig()
        self.security = SecurityConfig()
        self.monitoring = MonitoringConfig()

        self.environment = "development"

        load_dotenv()
        self._load_from_environment()
        self._update_environment_settings()

    def _load_from_environment(self):
        """Load every section from environment variables"""
        self.environment = os.getenv("ENVIRONMENT", "development")

        # Server
        self.server.host = os.getenv("HOST", self.server.host)
        self.server.port = int(os.getenv("PORT", str(self.server.port)))
        self.server.cors_origins = _env_list("CORS_ORIGINS", self.server.cors_origins)

        # PNCP
        self.pncp.base_url = os.getenv("PNCP_BASE_URL", self.pncp.base_url).rstrip("/")
        self.pncp.timeout_seconds = int(os.getenv("PNCP_TIMEOUT_S", str(self.pncp.timeout_seconds)))
        self.pncp.max_retries = int(os.getenv("PNCP_MAX_RETRIES", str(self.pncp.max_retries)))
        self.pncp.retry_delay = float(os.getenv("PNCP_RETRY_DELAY_S", str(self.pncp.retry_delay)))
        self.pncp.cache_ttl_seconds = int(os.getenv("PNCP_CACHE_TTL_S", str(self.pncp.cache_ttl_seconds)))
        self.pncp.cache_max_entries = int(os.getenv("PNCP_CACHE_MAX_ENTRIES", str(self.pncp.cache_max_entries)))
        self.pncp.notice_source = os.getenv("NOTICE_SOURCE", self.pncp.notice_source).lower()

        # LLM providers
        self.llm.default_provider = os.getenv("LLM_PROVIDER", self.llm.default_provider).lower()
        self.llm.groq_api_key = os.getenv("GROQ_API_KEY")
        self.llm.groq_model = os.getenv("GROQ_MODEL", self.llm.groq_model)
        self.llm.lovable_api_key = os.getenv("LOVABLE_API_KEY")
        self.llm.lovable_model = os.getenv("LOVABLE_MODEL", self.llm.lovable_model)
        self.llm.temperature = float(os.getenv("LLM_TEMPERATURE", str(self.llm.temperature)))
        self.llm.max_tokens = int(os.getenv("LLM_MAX_TOKENS", str(self.llm.max_tokens)))
        self.llm.timeout_seconds = int(os.getenv("LLM_TIMEOUT_S", str(self.llm.timeout_seconds)))

        # N8N
        self.n8n.base_url = os.getenv("N8N_BASE_URL", self.n8n.base_url).rstrip("/")
        self.n8n.api_key = os.getenv("N8N_API_KEY")
        self.n8n.mcp_workflow_name = os.getenv("N8N_MCP_WORKFLOW", self.n8n.mcp_workflow_name)
        self.n8n.webhook_path = os.getenv("N8N_WEBHOOK_PATH", self.n8n.webhook_path)

        # Security
        self.security.api_key = os.getenv("MCP_API_KEY")
        self.security.jwt_secret = os.getenv("SUPABASE_JWT_SECRET")
        self.security.jwt_audience = os.getenv("SUPABASE_JWT_AUDIENCE")

        # Monitoring
        self.monitoring.log_format = os.getenv("LOG_FORMAT", self.monitoring.log_format).lower()
        self.monitoring.enable_metrics = _env_bool("ENABLE_METRICS", self.monitoring.enable_metrics)

    def _update_environment_settings(self):
        """Update settings based on environment"""
        if os.getenv("LOG_LEVEL"):
            self.monitoring.log_level = os.getenv("LOG_LEVEL").upper()
        elif self.environment == "production":
            self.monitoring.log_level = "WARNING"
        elif self.environment == "development":
            self.monitoring.log_level = "DEBUG"

    def get_provider_settings(self, provider: Optional[str] = None) -> Dict[str, Optional[str]]:
        """Get base URL, API key and default model for a chat provider"""
        name = (provider or self.llm.default_provider).lower()
        if name == "groq":
            return {
                "name": "groq",
                "base_url": self.llm.groq_base_url,
                "api_key": self.llm.groq_api_key,
                "model": self.llm.groq_model,
                "api_key_env": "GROQ_API_KEY",
            }
        if name == "lovable":
            return {
                "name": "lovable",
                "base_url": self.llm.lovable_base_url,
                "api_key": self.llm.lovable_api_key,
                "model": self.llm.lovable_model,
                "api_key_env": "LOVABLE_API_KEY",
            }
        raise ValueError(f"Unknown chat provider: {name}")

    def refresh_configuration(self):
        """Reload configuration from the environment"""
        self.__init__()


# Global configuration instance
config = Config()
