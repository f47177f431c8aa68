import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "provider": "ollama",  # "ollama" or "openai" (any OpenAI-compatible local server)
    "model_url": "http://localhost:11434",
    "model_name": "codellama:7b-instruct",
    "analysis_timeout": 600,  # seconds; large local models are slow
    "reply_timeout": 60,
    "health_timeout": 5,
    "temperature": 0.3,
    "top_p": 0.9,
    "num_predict": 4000,
    "incremental_num_predict": 2000,
    "reply_temperature": 0.7,
    "reply_num_predict": 200,
    "diff_context_lines": 3,
    "snippet_context_lines": 5,
    "max_workers": 1,  # >1 fans batch files out over a thread pool
    "guidelines": None,  # None = use built-in catalog; set to a YAML path to override
    "store": "sqlite",  # "sqlite" or "memory"
    "store_path": ".filelens.db",
    "failed_review_retention_days": 30,
    "user": None,
}

# Environment variable → config key. Applied after the config file, before CLI overrides.
_ENV_OVERRIDES = {
    "OLLAMA_URL": "model_url",
    "OLLAMA_MODEL": "model_name",
    "FILELENS_USER": "user",
}


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling parameters and timeout for one model call."""

    temperature: float = 0.3
    top_p: float = 0.9
    num_predict: int = 4000
    timeout: float = 600.0


def load_config(config_path: str = ".filelens.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .filelens.yml in the current directory
      3. Environment variables (OLLAMA_URL, OLLAMA_MODEL, FILELENS_USER)
      4. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Credentials only come from the environment.
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    if not config.get("user"):
        config["user"] = os.environ.get("USER") or os.environ.get("USERNAME") or "local"

    return config


def analysis_options(config: dict, incremental: bool = False) -> GenerationOptions:
    return GenerationOptions(
        temperature=float(config.get("temperature", DEFAULT_CONFIG["temperature"])),
        top_p=float(config.get("top_p", DEFAULT_CONFIG["top_p"])),
        num_predict=int(
            config.get("incremental_num_predict", DEFAULT_CONFIG["incremental_num_predict"])
            if incremental
            else config.get("num_predict", DEFAULT_CONFIG["num_predict"])
        ),
        timeout=float(config.get("analysis_timeout", DEFAULT_CONFIG["analysis_timeout"])),
    )


def reply_options(config: dict) -> GenerationOptions:
    return GenerationOptions(
        temperature=float(config.get("reply_temperature", DEFAULT_CONFIG["reply_temperature"])),
        top_p=float(config.get("top_p", DEFAULT_CONFIG["top_p"])),
        num_predict=int(config.get("reply_num_predict", DEFAULT_CONFIG["reply_num_predict"])),
        timeout=float(config.get("reply_timeout", DEFAULT_CONFIG["reply_timeout"])),
    )
