"""Configuration helpers for the terminal assistant.

This module centralizes environment-driven settings so the rest of the code
can stay simple. Values are read once per orchestrator and passed down.
"""

from __future__ import annotations

import os
from pathlib import Path
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass
class Config:
    """Runtime configuration values loaded from environment variables."""

    max_iterations: int = 10
    max_execution_time_sec: float = 60.0
    command_timeout_sec: float = 30.0
    max_output_size: int = 100000
    cache_ttl_sec: int = 300
    max_question_length: int = 500
    backend: str = "session"
    working_dir: str = ""
    shell_path: str = "/bin/bash"
    ssh_host: str = ""
    ssh_port: int = 22
    ssh_user: str = ""
    ssh_key_path: str = ""
    ssh_password: str = ""
    ollama_base_url: str = "http://127.0.0.1:11434"
    chat_model: str = "qwen2.5:7b-instruct"
    chat_max_tokens: int = 1024
    request_timeout_sec: int = 60
    policy_path: str = ""
    metrics_enabled: bool = False
    metrics_path: str = ""


def load_config() -> Config:
    """Load configuration from environment variables with safe defaults."""

    return Config(
        max_iterations=int(os.getenv("TA_MAX_ITERATIONS", "10")),
        max_execution_time_sec=float(os.getenv("TA_MAX_EXECUTION_TIME_SEC", "60")),
        command_timeout_sec=float(os.getenv("TA_COMMAND_TIMEOUT_SEC", "30")),
        max_output_size=int(os.getenv("TA_MAX_OUTPUT_SIZE", "100000")),
        cache_ttl_sec=int(os.getenv("TA_CACHE_TTL_SEC", "300")),
        max_question_length=int(os.getenv("TA_MAX_QUESTION_LENGTH", "500")),
        backend=os.getenv("TA_BACKEND", "session").lower(),
        working_dir=os.getenv("TA_WORKING_DIR", ""),
        shell_path=os.getenv("TA_SHELL", "/bin/bash"),
        ssh_host=os.getenv("TA_SSH_HOST", ""),
        ssh_port=int(os.getenv("TA_SSH_PORT", "22")),
        ssh_user=os.getenv("TA_SSH_USER", ""),
        ssh_key_path=os.getenv("TA_SSH_KEY_PATH", ""),
        ssh_password=os.getenv("TA_SSH_PASSWORD", ""),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
        chat_model=os.getenv("OLLAMA_CHAT_MODEL", "qwen2.5:7b-instruct"),
        chat_max_tokens=int(os.getenv("CHAT_MAX_TOKENS", "1024")),
        request_timeout_sec=int(os.getenv("REQUEST_TIMEOUT_SEC", "60")),
        policy_path=os.getenv("TA_POLICY_PATH", ""),
        metrics_enabled=_env_bool("METRICS_ENABLED", "false"),
        metrics_path=os.getenv(
            "METRICS_PATH",
            str(Path.home() / ".terminal_assistant" / "run_metrics.jsonl"),
        ),
    )
