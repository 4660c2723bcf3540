"""Policy evaluation through an Open Policy Agent server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx

from refdata.adapters.http_resilience import ResilientClient
from refdata.config.policy import OpaConfig, get_opa_config
from refdata.domain.change_requests import PolicyDecision

if TYPE_CHECKING:
    from collections.abc import Callable

    from refdata.config.http_resilience import ResilienceConfig
    from refdata.domain.change_requests import PolicyInput

log = getLogger(__name__)


def parse_decision(payload: object) -> PolicyDecision:
    """Read ``{"result": {...}}`` (or a bare boolean result) into a decision.

    Anything unexpected fails closed.
    """

    if not isinstance(payload, dict) or "result" not in payload:
        return PolicyDecision.deny("Policy returned no result")
    result = payload["result"]
    if isinstance(result, bool):
        return PolicyDecision(allowed=result, reason=None if result else "Denied by policy")
    if not isinstance(result, dict):
        return PolicyDecision.deny("Policy result has an unexpected shape")
    allowed = result.get("allow", result.get("allowed", False))
    reason = result.get("reason")
    return PolicyDecision(
        allowed=bool(allowed),
        reason=str(reason) if reason is not None else None,
        requires_additional_approval=bool(result.get("requires_additional_approval", False)),
    )


@dataclass(slots=True)
class OpaPolicyEvaluator:
    config: OpaConfig = field(default_factory=get_opa_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = ResilientClient

    @property
    def endpoint(self) -> str:
        return f"{self.config.url}/v1/data/{self.config.policy_name.strip('/')}"

    def evaluate(self, policy_input: PolicyInput) -> PolicyDecision:
        try:
            payload = asyncio.run(self._query(policy_input))
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("Policy evaluation failed, denying: %s", exc)
            return PolicyDecision.deny(f"Policy evaluation failed: {exc}")
        decision = parse_decision(payload)
        log.info(
            "Policy %s for %s/%s: allowed=%s, extra_approval=%s",
            self.config.policy_name,
            policy_input.dataset,
            policy_input.change_type,
            decision.allowed,
            decision.requires_additional_approval,
        )
        return decision

    async def _query(self, policy_input: PolicyInput) -> object:
        async with self.client_factory(self.config.resilience) as client:
            response = await client.post(self.endpoint, json={"input": policy_input.to_dict()})
            response.raise_for_status()
            return response.json()


if TYPE_CHECKING:
    from refdata.domain.ports.workflow import PolicyEvaluator

    _evaluator_check: PolicyEvaluator = OpaPolicyEvaluator()
