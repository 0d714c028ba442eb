"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

CONFIG_DIR = Path.home() / ".sshai-client"
CONFIG_FILE = CONFIG_DIR / "config.toml"


@dataclass(frozen=True)
class ProviderPreset:
    base_url: str
    default_model: str


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset("https://api.openai.com/v1", "gpt-4o-mini"),
    "groq": ProviderPreset("https://api.groq.com/openai/v1", "llama-3.3-70b-versatile"),
    "ollama": ProviderPreset("http://localhost:11434/v1", "llama3.1"),
    "custom": ProviderPreset("", "gpt-4o-mini"),
}


@dataclass
class SSHConfig:
    host: str = ""
    port: int = 22
    username: str = ""
    key_path: str = ""
    verify_host_key: bool = True
    connect_timeout: int = 15
    command_timeout: int = 60
    preferred_shell: str = ""


@dataclass
class AIConfig:
    provider: str = "openai"
    base_url: str = ""
    model: str = ""
    api_key_env: str = "SSHAI_API_KEY"
    timeout: int = 30
    max_tokens: int = 500
    temperature: float = 0.1

    def resolved_base_url(self) -> str:
        preset = PROVIDER_PRESETS.get(self.provider, PROVIDER_PRESETS["custom"])
        return self.base_url or preset.base_url

    def resolved_model(self) -> str:
        preset = PROVIDER_PRESETS.get(self.provider, PROVIDER_PRESETS["custom"])
        return self.model or preset.default_model


@dataclass
class CacheConfig:
    ttl_seconds: int = 86400
    max_rows: int = 500


@dataclass
class StorageConfig:
    db_path: str = "~/.sshai-client/sshai.db"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = "~/.sshai-client/sshai.log"


@dataclass
class AppConfig:
    ssh: SSHConfig = field(default_factory=SSHConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        ssh = data.get("ssh", {})
        config.ssh.host = ssh.get("host", config.ssh.host)
        config.ssh.port = ssh.get("port", config.ssh.port)
        config.ssh.username = ssh.get("username", config.ssh.username)
        config.ssh.key_path = ssh.get("key_path", config.ssh.key_path)
        config.ssh.verify_host_key = ssh.get("verify_host_key", config.ssh.verify_host_key)
        config.ssh.connect_timeout = ssh.get("connect_timeout", config.ssh.connect_timeout)
        config.ssh.command_timeout = ssh.get("command_timeout", config.ssh.command_timeout)
        config.ssh.preferred_shell = ssh.get("preferred_shell", config.ssh.preferred_shell)

        ai = data.get("ai", {})
        config.ai.provider = ai.get("provider", config.ai.provider)
        config.ai.base_url = ai.get("base_url", config.ai.base_url)
        config.ai.model = ai.get("model", config.ai.model)
        config.ai.api_key_env = ai.get("api_key_env", config.ai.api_key_env)
        config.ai.timeout = ai.get("timeout", config.ai.timeout)
        config.ai.max_tokens = ai.get("max_tokens", config.ai.max_tokens)
        config.ai.temperature = ai.get("temperature", config.ai.temperature)

        cache = data.get("cache", {})
        config.cache.ttl_seconds = cache.get("ttl_seconds", config.cache.ttl_seconds)
        config.cache.max_rows = cache.get("max_rows", config.cache.max_rows)

        storage = data.get("storage", {})
        config.storage.db_path = storage.get("db_path", config.storage.db_path)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_host := os.environ.get("SSHAI_HOST"):
        config.ssh.host = env_host
    if env_port := os.environ.get("SSHAI_PORT"):
        config.ssh.port = int(env_port)
    if env_user := os.environ.get("SSHAI_USER"):
        config.ssh.username = env_user
    if env_key := os.environ.get("SSHAI_KEY_PATH"):
        config.ssh.key_path = env_key
    if env_provider := os.environ.get("SSHAI_PROVIDER"):
        config.ai.provider = env_provider
    if env_model := os.environ.get("SSHAI_MODEL"):
        config.ai.model = env_model
    if env_base_url := os.environ.get("SSHAI_BASE_URL"):
        config.ai.base_url = env_base_url
    if env_ttl := os.environ.get("SSHAI_CACHE_TTL"):
        config.cache.ttl_seconds = int(env_ttl)
    if env_rows := os.environ.get("SSHAI_CACHE_MAX_ROWS"):
        config.cache.max_rows = int(env_rows)
    if env_db := os.environ.get("SSHAI_DB_PATH"):
        config.storage.db_path = env_db
    if env_log_level := os.environ.get("SSHAI_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "ssh": {
            "host": config.ssh.host,
            "port": config.ssh.port,
            "username": config.ssh.username,
            "key_path": config.ssh.key_path,
            "verify_host_key": config.ssh.verify_host_key,
            "connect_timeout": config.ssh.connect_timeout,
            "command_timeout": config.ssh.command_timeout,
            "preferred_shell": config.ssh.preferred_shell,
        },
        "ai": {
            "provider": config.ai.provider,
            "base_url": config.ai.base_url,
            "model": config.ai.model,
            "api_key_env": config.ai.api_key_env,
            "timeout": config.ai.timeout,
            "max_tokens": config.ai.max_tokens,
            "temperature": config.ai.temperature,
        },
        "cache": {
            "ttl_seconds": config.cache.ttl_seconds,
            "max_rows": config.cache.max_rows,
        },
        "storage": {
            "db_path": config.storage.db_path,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)
