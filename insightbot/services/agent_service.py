"""Bounded tool-use loop between the model and the analytics engine."""

import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from insightbot.logging_config import get_logger
from insightbot.services.agent_state import AgentState, finish, request_tools, resubmit
from insightbot.services.complexity_service import EffortTier
from insightbot.services.llm import LLMProvider, ToolCall
from insightbot.services.tool_registry import QueryScope, ToolInvocation, ToolRegistry

logger = get_logger("agent_service")

AGENT_TEMPERATURE = float(os.environ.get("AGENT_TEMPERATURE", "0.1"))
AGENT_TIMEOUT_SECONDS = float(os.environ.get("AGENT_TIMEOUT_SECONDS", "45"))
TOOL_WORKERS = int(os.environ.get("AGENT_TOOL_WORKERS", "4"))

STOP_ANSWERED = "answered"
STOP_ROUND_BUDGET = "round_budget"

UNGROUNDED_FIGURES_REPLY = (
    "Não consegui obter os dados para responder com números agora. "
    "Pode tentar novamente em instantes ou reformular a pergunta?"
)

_FIGURE = re.compile(r"R\$\s*\d|\d+(?:[.,]\d+)?\s?%")


@dataclass
class AgentResult:
    text: str
    rounds: int
    stop_reason: str
    invocations: list[ToolInvocation] = field(default_factory=list)
    state: AgentState = AgentState.DONE

    @property
    def grounded(self) -> bool:
        return any(invocation.has_rows for invocation in self.invocations)


def states_unsupported_figures(text: str, invocations: list[ToolInvocation]) -> bool:
    """Currency or percentage figures with no tool result behind them."""
    if any(invocation.has_rows for invocation in invocations):
        return False
    return bool(_FIGURE.search(text or ""))


class AgentLoop:
    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        *,
        model: Optional[str] = None,
        temperature: float = AGENT_TEMPERATURE,
        timeout_seconds: float = AGENT_TIMEOUT_SECONDS,
        max_workers: int = TOOL_WORKERS,
    ):
        self.provider = provider
        self.registry = registry
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.max_workers = max(1, max_workers)

    def _execute_round(self, calls: list[ToolCall], scope: QueryScope) -> list[ToolInvocation]:
        if len(calls) == 1:
            call = calls[0]
            return [self.registry.invoke(call.name, call.arguments, scope)]
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(calls))) as pool:
            futures = [pool.submit(self.registry.invoke, call.name, call.arguments, scope) for call in calls]
            return [future.result() for future in futures]

    def run(self, system_prompt: str, user_message: str, tier: EffortTier, scope: QueryScope) -> AgentResult:
        """Drive the model until it answers in text or the tier's round budget is spent.

        UpstreamFailure from the provider or the analytics engine propagates and
        aborts the turn. Tool-level errors are fed back to the model instead.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        tools = self.registry.schemas()
        state = AgentState.AWAITING_MODEL
        invocations: list[ToolInvocation] = []
        last_text = ""
        rounds = 0
        stop_reason = STOP_ANSWERED

        while True:
            rounds += 1
            final_round = rounds >= tier.max_rounds
            response = self.provider.generate(
                messages,
                model=self.model,
                temperature=self.temperature,
                max_tokens=tier.max_tokens,
                tools=tools,
                timeout_seconds=self.timeout_seconds,
                tool_choice="none" if final_round else None,
            )
            if response.content and response.content.strip():
                last_text = response.content.strip()

            if not response.wants_tools:
                stop_reason = STOP_ROUND_BUDGET if final_round and invocations else STOP_ANSWERED
                break
            if final_round:
                stop_reason = STOP_ROUND_BUDGET
                break

            state = request_tools(state)
            round_invocations = self._execute_round(response.tool_calls, scope)
            messages.append(response.as_assistant_message())
            for call, invocation in zip(response.tool_calls, round_invocations):
                messages.append({"role": "tool", "tool_call_id": call.id, "content": invocation.as_tool_content()})
            invocations.extend(round_invocations)

            logger.info(
                "Tool round completed",
                extra={
                    "context": {
                        "round": rounds,
                        "calls": len(round_invocations),
                        "errors": sum(1 for invocation in round_invocations if not invocation.ok),
                    }
                },
            )
            state = resubmit(state)

        state = finish(state)

        text = last_text
        if states_unsupported_figures(text, invocations):
            logger.warning(
                "Answer cites figures without query results, replacing",
                extra={"context": {"rounds": rounds, "invocations": len(invocations)}},
            )
            text = UNGROUNDED_FIGURES_REPLY

        logger.info(
            "Agent loop finished",
            extra={
                "context": {
                    "tier": tier.level,
                    "rounds": rounds,
                    "stop_reason": stop_reason,
                    "invocations": len(invocations),
                }
            },
        )
        return AgentResult(text=text, rounds=rounds, stop_reason=stop_reason, invocations=invocations, state=state)
