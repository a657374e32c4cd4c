"""Pydantic models for ptybridge settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class BridgeConfig(BaseModel):
    """Settings for one helper process and the sessions it hosts.

    The helper command is an opaque input: locating a suitable helper
    executable is up to the caller (or the ``PTYBRIDGE_HELPER`` env var).
    """

    helper_command: list[str] = Field(
        default_factory=list,
        description="Helper executable and its arguments.",
    )
    helper_env: dict[str, str] = Field(
        default_factory=lambda: {"PYTHONIOENCODING": "utf-8:ignore"},
        description="Extra environment for the helper, layered over os.environ.",
    )
    helper_cwd: str | None = Field(
        default=None, description="Working directory for the helper process."
    )
    default_rows: int = Field(default=24, ge=1)
    default_columns: int = Field(default=80, ge=1)
    create_timeout: float | None = Field(
        default=None,
        gt=0,
        description=(
            "Seconds to wait for a 'created' acknowledgement before a session "
            "is treated as failed. None waits forever."
        ),
    )
    resolver: Literal["fifo", "request_id"] = Field(
        default="fifo",
        description=(
            "How 'created' acknowledgements are matched to sessions: 'fifo' "
            "relies on creation order, 'request_id' on an echoed request id."
        ),
    )
    read_chunk_size: int = Field(default=4096, ge=1)
    shutdown_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for the helper to exit before killing it.",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> BridgeConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYBRIDGE_HELPER          - Helper command line (shell-style quoting)
            PTYBRIDGE_CREATE_TIMEOUT  - Seconds to wait for 'created'
            PTYBRIDGE_RESOLVER        - 'fifo' or 'request_id'
            PTYBRIDGE_ROWS            - Default rows for new sessions
            PTYBRIDGE_COLUMNS         - Default columns for new sessions
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_helper = os.environ.get("PTYBRIDGE_HELPER")
        if env_helper:
            config_data["helper_command"] = shlex.split(env_helper)

        env_timeout = os.environ.get("PTYBRIDGE_CREATE_TIMEOUT")
        if env_timeout:
            config_data["create_timeout"] = float(env_timeout)

        env_resolver = os.environ.get("PTYBRIDGE_RESOLVER")
        if env_resolver:
            config_data["resolver"] = env_resolver.lower()

        env_rows = os.environ.get("PTYBRIDGE_ROWS")
        if env_rows:
            config_data["default_rows"] = int(env_rows)

        env_columns = os.environ.get("PTYBRIDGE_COLUMNS")
        if env_columns:
            config_data["default_columns"] = int(env_columns)

        return cls.model_validate(config_data)
