import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "store": "memory",  # memory | sqlite | redis
    "store_path": ".codelens.db",
    "redis_url": "redis://localhost:6379/0",
    "ttl_seconds": 300,
    "max_code_chars": 100000,
    "chunk_threshold": 100,
    "implementation_chunk_threshold": 500,
    "max_concurrency": 4,
    "host": "127.0.0.1",
    "port": 8000,
    "server_url": "http://127.0.0.1:8000",
    # Client polling schedule, in seconds.
    "poll_initial": 0.5,
    "poll_factor": 1.5,
    "poll_ceiling": 5.0,
}


def load_config(config_path: str = ".codelens.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .codelens.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials and deployment settings from environment variables
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    if os.environ.get("CODELENS_REDIS_URL"):
        config["redis_url"] = os.environ["CODELENS_REDIS_URL"]

    return config
