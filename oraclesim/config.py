"""
Simulator configuration.

Loaded from the environment (and a .env file in the working directory, which
never overrides variables already set):

    ORACLESIM_RPC_URL           JSON-RPC endpoint (omit to run against LocalRouter)
    ORACLESIM_ROUTER_ADDRESS    functions router contract
    ORACLESIM_PRIVATE_KEY       oracle key that signs fulfill transactions
    ORACLESIM_CHAIN_ID          chain id for fulfill transactions
    ORACLESIM_POLL_INTERVAL     event poll interval, seconds (default 0.05)
    ORACLESIM_HTTP_TIMEOUT      httpRequest timeout, seconds (default 20)
    ORACLESIM_ENCODING_SCHEME   packed | tuple (default packed)
    ORACLESIM_SUBMIT_RETRIES    extra fulfill attempts (default 3)
    ORACLESIM_SUBMIT_BACKOFF    backoff step between attempts, seconds (default 0.5)
    ORACLESIM_REPORT_ERRORS     fulfill failures with err instead of abandoning (default false)
    ORACLESIM_MAX_RESULT_BYTES  cap on result size (default: none)
    ORACLESIM_MAX_CONCURRENT_REQUESTS  httpRequests parallelism bound (default 8)
    ORACLESIM_SECRETS           JSON object of secrets handed to every script
"""

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError

from oraclesim.schema import EncodingScheme
from oraclesim.secrets_bundle import SecretsBundle

ENV_PREFIX = "ORACLESIM_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class SimulatorConfig(BaseModel):
    rpc_url: Optional[str] = Field(None, description="JSON-RPC endpoint; None means in-process router")
    router_address: Optional[str] = Field(None, description="Functions router contract (0x)")
    private_key: Optional[SecretStr] = Field(None, description="Key that signs fulfill transactions")
    chain_id: Optional[int] = None
    poll_interval_seconds: float = Field(0.05, gt=0)
    http_timeout_seconds: float = Field(20.0, gt=0)
    encoding_scheme: EncodingScheme = EncodingScheme.PACKED
    submit_retries: int = Field(3, ge=0)
    submit_backoff_seconds: float = Field(0.5, ge=0)
    report_errors: bool = False
    max_result_bytes: Optional[int] = Field(None, gt=0)
    max_concurrent_requests: int = Field(8, ge=1)
    secrets: Dict[str, str] = Field(default_factory=dict, repr=False)

    @property
    def uses_local_router(self) -> bool:
        return not self.rpc_url

    def secrets_bundle(self) -> SecretsBundle:
        return SecretsBundle(self.secrets)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, **overrides) -> "SimulatorConfig":
        """Build config from ORACLESIM_* variables. Keyword overrides win over the environment."""
        load_dotenv(env_file or Path.cwd() / ".env", override=False)

        def get(name: str) -> Optional[str]:
            value = os.getenv(ENV_PREFIX + name)
            return value.strip() if value is not None else None

        raw: Dict[str, object] = {
            "rpc_url": get("RPC_URL") or None,
            "router_address": get("ROUTER_ADDRESS") or None,
            "private_key": get("PRIVATE_KEY") or None,
        }
        numeric = {
            "chain_id": get("CHAIN_ID"),
            "poll_interval_seconds": get("POLL_INTERVAL"),
            "http_timeout_seconds": get("HTTP_TIMEOUT"),
            "submit_retries": get("SUBMIT_RETRIES"),
            "submit_backoff_seconds": get("SUBMIT_BACKOFF"),
            "max_result_bytes": get("MAX_RESULT_BYTES"),
            "max_concurrent_requests": get("MAX_CONCURRENT_REQUESTS"),
        }
        raw.update({k: v for k, v in numeric.items() if v})
        scheme = get("ENCODING_SCHEME")
        if scheme:
            raw["encoding_scheme"] = scheme.lower()
        report_errors = get("REPORT_ERRORS")
        if report_errors is not None:
            raw["report_errors"] = _parse_bool(report_errors, ENV_PREFIX + "REPORT_ERRORS")
        secrets = get("SECRETS")
        if secrets:
            raw["secrets"] = dict(SecretsBundle.from_json(secrets))
        raw.update(overrides)
        try:
            return cls(**raw)
        except ValidationError as e:
            raise ValueError(f"Invalid oraclesim configuration: {e}") from e


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}")
