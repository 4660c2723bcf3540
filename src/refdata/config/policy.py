"""Policy service (OPA) configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_str
from .http_resilience import ResilienceConfig, resilience_from_env

DEFAULT_OPA_URL = "http://localhost:8181"
DEFAULT_OPA_POLICY = "reference/change_approval"


@dataclass(frozen=True, slots=True)
class OpaConfig:
    url: str = DEFAULT_OPA_URL
    policy_name: str = DEFAULT_OPA_POLICY
    resilience: ResilienceConfig = field(
        default_factory=lambda: ResilienceConfig(name="opa", timeout_seconds=5.0)
    )


def get_opa_config() -> OpaConfig:
    defaults = OpaConfig()
    return OpaConfig(
        url=(env_str("REFDATA_OPA_URL", DEFAULT_OPA_URL) or DEFAULT_OPA_URL).rstrip("/"),
        policy_name=env_str("REFDATA_OPA_POLICY", DEFAULT_OPA_POLICY) or DEFAULT_OPA_POLICY,
        resilience=resilience_from_env("REFDATA_OPA", defaults.resilience),
    )
