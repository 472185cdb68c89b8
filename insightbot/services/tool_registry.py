"""Tools the model may call, dispatched by name."""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from insightbot.logging_config import get_logger
from insightbot.models import AnalyticsConnection
from insightbot.services import analytics_service
from insightbot.services.errors import ToolExecutionFailure

logger = get_logger("tool_registry")

MAX_TOOL_RESULT_CHARS = 8000
MAX_TOOL_ROWS = 200


@dataclass(frozen=True)
class QueryScope:
    """The (connection, dataset) every tool call in a turn is bound to."""

    connection: AnalyticsConnection
    dataset_id: str


@dataclass
class ToolInvocation:
    tool_name: str
    query_text: Optional[str]
    rows: Optional[list[dict]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_rows(self) -> bool:
        return bool(self.rows)

    def as_tool_content(self) -> str:
        if self.error is not None:
            return f"Erro: {self.error}"
        rows = self.rows or []
        payload = json.dumps(rows[:MAX_TOOL_ROWS], ensure_ascii=False, default=str)
        if len(rows) > MAX_TOOL_ROWS or len(payload) > MAX_TOOL_RESULT_CHARS:
            payload = payload[:MAX_TOOL_RESULT_CHARS] + f"... [truncado, {len(rows)} linhas no total]"
        return payload


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict
    handler: Callable[[QueryScope, dict], list[dict]]
    required: list[str] = field(default_factory=list)

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.parameters,
                    "required": self.required,
                },
            },
        }


class ToolRegistry:
    def __init__(self, tools: Optional[list[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def schemas(self) -> list[dict]:
        return [tool.schema() for tool in self._tools.values()]

    def invoke(self, name: str, raw_arguments: str, scope: QueryScope) -> ToolInvocation:
        """Run one tool call. Every failure the model can act on comes back as an error invocation."""
        tool = self._tools.get(name)
        if tool is None:
            return ToolInvocation(tool_name=name, query_text=None, error=f"ferramenta desconhecida '{name}'")

        try:
            arguments: Any = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError as e:
            return ToolInvocation(tool_name=name, query_text=None, error=f"argumentos inválidos ({e.msg})")
        if not isinstance(arguments, dict):
            return ToolInvocation(tool_name=name, query_text=None, error="argumentos devem ser um objeto JSON")

        missing = [key for key in tool.required if not arguments.get(key)]
        query_text = arguments.get("query")
        if missing:
            return ToolInvocation(
                tool_name=name, query_text=query_text, error=f"parâmetro obrigatório ausente: {', '.join(missing)}"
            )

        try:
            rows = tool.handler(scope, arguments)
        except ToolExecutionFailure as e:
            logger.info("Tool execution failed", extra={"context": {"tool": name, "error": str(e)[:300]}})
            return ToolInvocation(tool_name=name, query_text=query_text, error=str(e))
        return ToolInvocation(tool_name=name, query_text=query_text, rows=rows)


def _execute_dax(scope: QueryScope, arguments: dict) -> list[dict]:
    return analytics_service.execute_query(scope.connection, scope.dataset_id, arguments["query"])


EXECUTE_DAX = Tool(
    name="execute_dax",
    description=(
        "Executa uma consulta DAX no dataset Power BI do usuário e retorna as linhas da primeira tabela. "
        "Use EVALUATE com SUMMARIZECOLUMNS, TOPN ou ROW. Sempre consulte antes de citar qualquer número."
    ),
    parameters={"query": {"type": "string", "description": "Consulta DAX completa começando com EVALUATE."}},
    handler=_execute_dax,
    required=["query"],
)


def build_default_registry() -> ToolRegistry:
    return ToolRegistry([EXECUTE_DAX])
