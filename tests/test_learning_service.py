from types import SimpleNamespace
from uuid import uuid4

import pytest

from insightbot.models import QueryLearning
from insightbot.services.learning_service import (
    get_working_queries,
    identify_question_intent,
    query_hash,
    record_query_results,
)
from insightbot.services.tool_registry import ToolInvocation

QUERY = "EVALUATE ROW(\"Total\", SUM(Vendas[Valor]))"


@pytest.mark.parametrize(
    "question,intent",
    [
        ("Qual o faturamento por loja?", "faturamento_filial"),
        ("faturamento de cada vendedor", "faturamento_vendedor"),
        ("Quanto faturou hoje?", "faturamento_total"),
        ("vendas por filial em outubro", "faturamento_filial"),
        ("quem mais vendeu na semana", "top_vendedores"),
        ("Qual o ticket médio?", "ticket_medio"),
        ("qual a margem do mês", "margem"),
        ("Contas a pagar desta semana", "contas_pagar"),
        ("contas a receber vencidas", "contas_receber"),
        ("saldo em caixa", "saldo"),
        ("bom dia", "outros"),
        ("", "outros"),
        (None, "outros"),
    ],
)
def test_identify_question_intent(question, intent):
    assert identify_question_intent(question) == intent


def test_query_hash_ignores_surrounding_whitespace():
    assert query_hash(f"  {QUERY}\n") == query_hash(QUERY)
    assert len(query_hash(QUERY)) == 32


class TestWorkingQueries:
    def test_returns_ranked_queries(self, db_session):
        chain = db_session.query.return_value.filter.return_value.order_by.return_value.limit.return_value
        chain.all.return_value = [SimpleNamespace(dax_query="Q1"), SimpleNamespace(dax_query="Q2")]

        result = get_working_queries(db_session, uuid4(), "ds-1", "margem")

        assert result == ["Q1", "Q2"]
        db_session.query.assert_called_once_with(QueryLearning)
        db_session.query.return_value.filter.return_value.order_by.return_value.limit.assert_called_once_with(3)

    def test_empty(self, db_session):
        chain = db_session.query.return_value.filter.return_value.order_by.return_value.limit.return_value
        chain.all.return_value = []

        assert get_working_queries(db_session, uuid4(), "ds-1", "outros") == []


class TestRecordQueryResults:
    def _record(self, db_session, binding, invocations, now):
        return record_query_results(
            db_session,
            tenant_id=uuid4(),
            binding=binding,
            question="Qual a margem do mês?",
            intent="margem",
            invocations=invocations,
            now=now,
        )

    def test_new_successful_query_is_stored(self, db_session, make_binding, now):
        binding = make_binding()
        db_session.query.return_value.filter.return_value.first.return_value = None
        invocation = ToolInvocation(tool_name="execute_dax", query_text=f"  {QUERY} ", rows=[{"Total": 10}])

        assert self._record(db_session, binding, [invocation], now) == 1

        stored = db_session.add.call_args[0][0]
        assert isinstance(stored, QueryLearning)
        assert stored.dax_query == QUERY
        assert stored.dax_query_hash == query_hash(QUERY)
        assert stored.connection_id == binding.connection_id
        assert stored.dataset_id == "ds-1"
        assert stored.question_intent == "margem"
        assert stored.success is True
        assert stored.error_message is None
        assert stored.result_rows == 1
        assert stored.times_reused == 0
        assert stored.last_used_at == now
        db_session.flush.assert_called_once()

    def test_new_failed_query_keeps_error(self, db_session, make_binding, now):
        db_session.query.return_value.filter.return_value.first.return_value = None
        invocation = ToolInvocation(tool_name="execute_dax", query_text=QUERY, error="x" * 900)

        self._record(db_session, make_binding(), [invocation], now)

        stored = db_session.add.call_args[0][0]
        assert stored.success is False
        assert len(stored.error_message) == 500
        assert stored.result_rows is None
        assert stored.last_used_at is None

    def test_known_query_counts_as_reuse(self, db_session, make_binding, now):
        existing = SimpleNamespace(times_reused=4, last_used_at=None, success=False, error_message="old")
        db_session.query.return_value.filter.return_value.first.return_value = existing
        invocation = ToolInvocation(tool_name="execute_dax", query_text=QUERY, rows=[])

        assert self._record(db_session, make_binding(), [invocation], now) == 1

        assert existing.times_reused == 5
        assert existing.last_used_at == now
        assert existing.success is True
        assert existing.error_message is None
        db_session.add.assert_not_called()

    def test_known_query_failing_again_is_left_alone(self, db_session, make_binding, now):
        existing = SimpleNamespace(times_reused=4, last_used_at=None, success=True, error_message=None)
        db_session.query.return_value.filter.return_value.first.return_value = existing
        invocation = ToolInvocation(tool_name="execute_dax", query_text=QUERY, error="timeout")

        assert self._record(db_session, make_binding(), [invocation], now) == 0

        assert existing.times_reused == 4
        db_session.flush.assert_not_called()

    def test_same_query_twice_in_one_turn_stored_once(self, db_session, make_binding, now):
        db_session.query.return_value.filter.return_value.first.return_value = None
        invocations = [
            ToolInvocation(tool_name="execute_dax", query_text=QUERY, rows=[{"Total": 1}]),
            ToolInvocation(tool_name="execute_dax", query_text=QUERY + "\n", rows=[{"Total": 1}]),
        ]

        assert self._record(db_session, make_binding(), invocations, now) == 1
        db_session.add.assert_called_once()

    def test_invocations_without_query_are_skipped(self, db_session, make_binding, now):
        invocations = [
            ToolInvocation(tool_name="list_tables", query_text=None, rows=[{"name": "Vendas"}]),
            ToolInvocation(tool_name="execute_dax", query_text="   ", error="vazia"),
        ]

        assert self._record(db_session, make_binding(), invocations, now) == 0
        db_session.query.assert_not_called()
        db_session.flush.assert_not_called()
