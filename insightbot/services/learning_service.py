"""Query learning: DAX queries that worked are offered back for similar questions.

Questions are bucketed by a coarse business intent. Successful queries are
ranked by how often they were reused within the same dataset and intent.
"""

import hashlib
import re
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from insightbot.logging_config import get_logger
from insightbot.models import DatasetBinding, QueryLearning
from insightbot.services.complexity_service import fold_accents
from insightbot.services.tool_registry import ToolInvocation

logger = get_logger("learning_service")

MAX_WORKING_QUERIES = 3
MAX_STORED_TEXT_CHARS = 500
DEFAULT_INTENT = "outros"

# First match wins; patterns run against accent-stripped lowercase text.
INTENT_RULES = (
    ("faturamento_filial", r"faturamento.*(filial|loja|unidade)"),
    ("faturamento_vendedor", r"faturamento.*(vendedor|garcom|funcionario)"),
    ("faturamento_produto", r"faturamento.*(produto|item)"),
    ("faturamento_total", r"faturamento|faturou|receita total|vendeu quanto"),
    ("faturamento_filial", r"vendas?.*(filial|loja)"),
    ("faturamento_vendedor", r"vendas?.*(vendedor|garcom|funcionario)"),
    ("faturamento_produto", r"vendas?.*(produto|item)"),
    ("top_vendedores", r"top.*(vendedor|garcom|funcionario)|melhor vendedor|quem (mais )?vendeu"),
    ("top_produtos", r"top.*(produto|item)|produto.*(mais|melhor)"),
    ("top_filiais", r"top.*(filial|loja)|filial.*(mais|melhor)"),
    ("ticket_medio", r"ticket.*medio"),
    ("margem", r"margem|lucro"),
    ("cmv", r"cmv|custo"),
    ("contas_pagar", r"contas?.*(pagar|vencer)|a pagar"),
    ("contas_receber", r"contas?.*receber|a receber"),
    ("saldo", r"saldo|caixa|banco"),
)
_INTENT_PATTERNS = [(intent, re.compile(pattern)) for intent, pattern in INTENT_RULES]


def identify_question_intent(question: Optional[str]) -> str:
    folded = fold_accents(question or "")
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(folded):
            return intent
    return DEFAULT_INTENT


def query_hash(query: str) -> str:
    return hashlib.md5(query.strip().encode("utf-8")).hexdigest()


def get_working_queries(
    db: Session,
    connection_id: UUID,
    dataset_id: str,
    intent: str,
    limit: int = MAX_WORKING_QUERIES,
) -> list[str]:
    """Most reused successful queries for this dataset and intent."""
    rows = (
        db.query(QueryLearning)
        .filter(
            QueryLearning.connection_id == connection_id,
            QueryLearning.dataset_id == dataset_id,
            QueryLearning.question_intent == intent,
            QueryLearning.success == True,  # noqa: E712
        )
        .order_by(QueryLearning.times_reused.desc(), QueryLearning.last_used_at.desc().nullslast())
        .limit(limit)
        .all()
    )
    return [row.dax_query for row in rows]


def record_query_results(
    db: Session,
    *,
    tenant_id: UUID,
    binding: DatasetBinding,
    question: str,
    intent: str,
    invocations: list[ToolInvocation],
    now: Optional[datetime] = None,
) -> int:
    """Store each distinct query of a turn. A known query that succeeds again counts as a reuse.

    Returns the number of rows inserted or updated.
    """
    now = now or datetime.now(timezone.utc)
    seen: set[str] = set()
    changed = 0

    for invocation in invocations:
        query = (invocation.query_text or "").strip()
        if not query:
            continue
        digest = query_hash(query)
        if digest in seen:
            continue
        seen.add(digest)

        existing = (
            db.query(QueryLearning)
            .filter(
                QueryLearning.connection_id == binding.connection_id,
                QueryLearning.dataset_id == binding.dataset_id,
                QueryLearning.dax_query_hash == digest,
            )
            .first()
        )
        if existing is not None:
            if invocation.ok:
                existing.times_reused = (existing.times_reused or 0) + 1
                existing.last_used_at = now
                existing.success = True
                existing.error_message = None
                changed += 1
            continue

        db.add(
            QueryLearning(
                tenant_id=tenant_id,
                connection_id=binding.connection_id,
                dataset_id=binding.dataset_id,
                user_question=(question or "")[:MAX_STORED_TEXT_CHARS],
                question_intent=intent,
                dax_query=query,
                dax_query_hash=digest,
                success=invocation.ok,
                error_message=(invocation.error or "")[:MAX_STORED_TEXT_CHARS] or None,
                result_rows=len(invocation.rows) if invocation.rows is not None else None,
                times_reused=0,
                created_at=now,
                last_used_at=now if invocation.ok else None,
            )
        )
        changed += 1

    if changed:
        db.flush()
        logger.info(
            "Query learning updated",
            extra={"context": {"dataset_id": binding.dataset_id, "intent": intent, "changed": changed}},
        )
    return changed
