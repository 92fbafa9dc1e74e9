"""
Configuration for anvilkit.

Settings are read from the environment (optionally seeded from a ``.env``
file) into a frozen pydantic model. There is no module-level singleton: the
composition root loads a config once and passes it down.
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from anvilkit.utils.redaction import DEFAULT_SECRET_PATTERN

LogLevel = Literal["debug", "info", "warning", "error"]

ENV_VARS: Dict[str, str] = {
    "db_path": "ANVILKIT_DB_PATH",
    "anvil_path": "ANVIL_PATH",
    "anvil_host": "ANVIL_HOST",
    "anvil_port_start": "ANVIL_PORT_START",
    "anvil_port_end": "ANVIL_PORT_END",
    "anvil_default_chain_id": "ANVIL_DEFAULT_CHAIN_ID",
    "startup_timeout": "ANVIL_STARTUP_TIMEOUT",
    "startup_poll_interval": "ANVIL_STARTUP_POLL_INTERVAL",
    "stop_timeout": "ANVIL_STOP_TIMEOUT",
    "rpc_timeout": "ANVIL_RPC_TIMEOUT",
    "output_tail_lines": "ANVIL_OUTPUT_TAIL_LINES",
    "redact_pattern": "ANVILKIT_REDACT_PATTERN",
    "log_level": "LOG_LEVEL",
}
"""Config field -> environment variable."""


class AnvilKitConfig(BaseModel):
    """
    Settings for the node supervisor and its collaborators.

    Example:
        ```python
        config = AnvilKitConfig(
            db_path=":memory:",
            anvil_port_start=8545,
            anvil_port_end=8547,
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    db_path: str = Field(
        default="./anvilkit.db",
        description="SQLite file holding durable instance records",
    )
    anvil_path: str = Field(
        default="anvil",
        description="Node executable (looked up on PATH when not absolute)",
    )
    anvil_host: str = Field(
        default="127.0.0.1",
        description="Interface the node listens on and the probe connects to",
    )
    anvil_port_start: int = Field(
        default=8545,
        ge=1,
        le=65535,
        description="First port of the inclusive allocation range",
    )
    anvil_port_end: int = Field(
        default=8555,
        ge=1,
        le=65535,
        description="Last port of the inclusive allocation range",
    )
    anvil_default_chain_id: int = Field(
        default=31337,
        ge=1,
        description="Chain id used when a start request does not name one",
    )
    startup_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for a new node to answer its liveness probe",
    )
    startup_poll_interval: float = Field(
        default=0.1,
        gt=0,
        description="Seconds between liveness probes during startup",
    )
    stop_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait after SIGTERM before sending SIGKILL",
    )
    rpc_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Per-request timeout for control-plane JSON-RPC calls",
    )
    output_tail_lines: int = Field(
        default=200,
        ge=1,
        description="Redacted output lines kept in memory per instance",
    )
    redact_pattern: str = Field(
        default=DEFAULT_SECRET_PATTERN,
        description="Regex for secrets scrubbed from node output",
    )
    log_level: LogLevel = Field(
        default="info",
        description="Log level for the anvilkit logger",
    )

    @field_validator("redact_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"redact_pattern is not a valid regex: {e}") from e
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_level(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_ranges(self) -> "AnvilKitConfig":
        if self.anvil_port_end < self.anvil_port_start:
            raise ValueError(
                f"anvil_port_end ({self.anvil_port_end}) must be >= "
                f"anvil_port_start ({self.anvil_port_start})"
            )
        if self.startup_poll_interval > self.startup_timeout:
            raise ValueError("startup_poll_interval must not exceed startup_timeout")
        return self

    @property
    def port_range(self) -> range:
        """Inclusive allocation range as a Python range."""
        return range(self.anvil_port_start, self.anvil_port_end + 1)


def load_config(
    env_file: Optional[str] = None,
    **overrides: Any,
) -> AnvilKitConfig:
    """
    Build a config from the environment.

    Args:
        env_file: Optional path to a ``.env`` file (default: search upwards
            from the working directory). Existing environment variables win.
        **overrides: Field values that take precedence over the environment.

    Returns:
        Validated, frozen AnvilKitConfig.

    Raises:
        pydantic.ValidationError: If a value is out of range or malformed.
    """
    load_dotenv(env_file)

    values: Dict[str, Any] = {}
    for field_name, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is not None and raw != "":
            values[field_name] = raw

    values.update(overrides)
    return AnvilKitConfig(**values)
