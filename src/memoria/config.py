"""Application configuration loader.

Loads start-up configuration from ~/.memoria/config.json and provider API
keys from the environment. This is distinct from MemorySettings, which are
user-mutable at runtime and live in the key-value store.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".memoria"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.json"

# Environment variables holding API keys, by provider id
PROVIDER_ENV_KEYS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "siliconflow": "SILICONFLOW_API_KEY",
    "qwen": "DASHSCOPE_API_KEY",
    "doubao": "DOUBAO_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

# Chat-completion base URLs for OpenAI-compatible providers
DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "siliconflow": "https://api.siliconflow.cn/v1",
    "doubao": "https://ark.cn-beijing.volces.com/api/v3",
    "deepseek": "https://api.deepseek.com/v1",
    "qwen": "https://dashscope.aliyuncs.com/compatible-mode/v1",
}


@dataclass
class ProviderCredentials:
    """API key and optional base URL for one provider."""

    api_key: str = ""
    base_url: str | None = None


@dataclass
class AppConfig:
    """Start-up configuration for the memory subsystem.

    Attributes:
        data_dir: Root directory for memoria data (~/.memoria).
        db_path: SQLite database file (data_dir/memoria.db if None).
        log_dir: JSONL event log directory (data_dir/logs if None).
        credentials: Provider credentials keyed by provider id.
        embedding_timeout: Timeout in seconds for embedding requests.
        maintenance_interval_hours: Period of the background maintenance task.
    """

    data_dir: Path = DEFAULT_DATA_DIR
    db_path: Path | None = None
    log_dir: Path | None = None
    credentials: dict[str, ProviderCredentials] = field(default_factory=dict)
    embedding_timeout: float = 30.0
    maintenance_interval_hours: float = 24.0

    def __post_init__(self) -> None:
        """Resolve derived paths and validate numbers."""
        self.data_dir = Path(self.data_dir).expanduser()
        if self.db_path is None:
            self.db_path = self.data_dir / "memoria.db"
        else:
            self.db_path = Path(self.db_path).expanduser()
        if self.log_dir is None:
            self.log_dir = self.data_dir / "logs"
        else:
            self.log_dir = Path(self.log_dir).expanduser()

        if self.embedding_timeout <= 0:
            raise ValueError("embedding_timeout must be positive")
        if self.maintenance_interval_hours <= 0:
            raise ValueError("maintenance_interval_hours must be positive")


def load_config(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> AppConfig:
    """Load AppConfig from a JSON file and the environment.

    The config file should have this structure:
    ```json
    {
      "data_dir": "~/.memoria",
      "embedding_timeout": 30,
      "providers": {
        "openai": {"api_key": "sk-...", "base_url": "https://api.openai.com/v1"},
        "deepseek": {"base_url": "https://api.deepseek.com/v1"}
      }
    }
    ```

    Keys found in the environment fill in providers the file leaves
    without one.

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.
        environ: Environment mapping. Uses os.environ if None.

    Returns:
        AppConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    data: dict[str, Any] = {}
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
    else:
        try:
            with open(path, "r") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.warning("Config in %s is not an object. Using defaults.", path)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)

    return _parse_config(data, env)


def _parse_config(data: dict[str, Any], env: Any) -> AppConfig:
    """Parse a config dictionary plus environment into AppConfig."""
    credentials: dict[str, ProviderCredentials] = {}

    providers = data.get("providers", {})
    if isinstance(providers, dict):
        for provider_id, raw in providers.items():
            if not isinstance(raw, dict):
                logger.warning("Ignoring invalid provider entry: %s", provider_id)
                continue
            credentials[provider_id] = ProviderCredentials(
                api_key=str(raw.get("api_key") or ""),
                base_url=raw.get("base_url"),
            )

    for provider_id, env_key in PROVIDER_ENV_KEYS.items():
        api_key = env.get(env_key)
        if not api_key:
            continue
        creds = credentials.setdefault(provider_id, ProviderCredentials())
        if not creds.api_key:
            creds.api_key = api_key

    for provider_id, creds in credentials.items():
        if creds.base_url is None:
            creds.base_url = DEFAULT_BASE_URLS.get(provider_id)

    kwargs: dict[str, Any] = {"credentials": credentials}
    for key in ("data_dir", "db_path", "log_dir"):
        if data.get(key):
            kwargs[key] = Path(data[key])
    for key in ("embedding_timeout", "maintenance_interval_hours"):
        if key not in data:
            continue
        try:
            value = float(data[key])
        except (TypeError, ValueError):
            value = 0.0
        if value > 0:
            kwargs[key] = value
        else:
            logger.warning("Invalid %s %r in config, using default", key, data[key])

    return AppConfig(**kwargs)
