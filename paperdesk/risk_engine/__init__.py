from paperdesk.risk_engine.execution_gate import GateResult, evaluate_execution_gate
from paperdesk.risk_engine.guardrails import GuardrailResult, evaluate_guardrails, update_cooldown_state

__all__ = [
    "GateResult",
    "GuardrailResult",
    "evaluate_execution_gate",
    "evaluate_guardrails",
    "update_cooldown_state",
]
