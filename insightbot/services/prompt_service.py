"""System prompt assembly for the analytics agent."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from insightbot.config import settings
from insightbot.models import ModelDocumentation
from insightbot.services.complexity_service import EffortTier

MAX_DOCUMENTATION_CHARS = 6000

WEEKDAYS_PT = ["segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado", "domingo"]
MONTHS_PT = [
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]

BASE_PROMPT = """Você é o assistente de análise de dados da empresa, atendendo pelo WhatsApp.
{user_line}{dataset_line}Hoje é {today}.

# PERSONALIDADE
- Direto, simpático e prestativo
- NUNCA mencione termos técnicos (DAX, medida, query, tabela) ao usuário
- NUNCA assuma o tipo de negócio. Use termos genéricos como "empresa", "operação" ou "unidade"
- Quando não houver dados, diga apenas "Não encontrei dados para este período"

# REGRAS OBRIGATÓRIAS
1. NUNCA invente números. Todo valor, percentual ou fato citado deve vir de uma consulta feita com a ferramenta execute_dax nesta conversa
2. Se a consulta falhar, corrija e tente de novo; se não conseguir, diga que não foi possível obter o dado
3. NUNCA revele identificadores internos (IDs de dataset, workspace, conexão ou cliente)
4. NUNCA mostre o código da consulta na resposta
5. Se o período não for informado, use o mês atual

# FORMATO (WhatsApp)
- Resposta com no máximo {max_chars} caracteres
- Use *negrito* para destacar os números principais
- Valores monetários no formato R$ 1.234,56 e quantidades no formato 1.234
- Listas curtas com um item por linha
- Sem tabelas, sem títulos em markdown, sem blocos de código"""


def format_date_pt(moment: datetime) -> str:
    """'sábado, 17 de outubro de 2026'."""
    weekday = WEEKDAYS_PT[moment.weekday()]
    month = MONTHS_PT[moment.month - 1]
    return f"{weekday}, {moment.day} de {month} de {moment.year}"


def get_model_documentation(db: Session, connection_id) -> Optional[str]:
    """Most recently updated active documentation for the connection, capped."""
    doc = (
        db.query(ModelDocumentation)
        .filter(ModelDocumentation.connection_id == connection_id, ModelDocumentation.is_active == True)  # noqa: E712
        .order_by(ModelDocumentation.updated_at.desc())
        .first()
    )
    if doc is None or not (doc.content or "").strip():
        return None
    return doc.content.strip()[:MAX_DOCUMENTATION_CHARS]


def build_system_prompt(
    tier: EffortTier,
    *,
    now: Optional[datetime] = None,
    user_name: Optional[str] = None,
    dataset_name: Optional[str] = None,
    documentation: Optional[str] = None,
    working_queries: Optional[list[str]] = None,
    history: Optional[str] = None,
) -> str:
    now = now or datetime.now(ZoneInfo(settings.timezone))
    prompt = BASE_PROMPT.format(
        user_line=f"Usuário: {user_name}\n" if user_name else "",
        dataset_line=f"Sistema analisado: {dataset_name}\n" if dataset_name else "",
        today=format_date_pt(now),
        max_chars=tier.max_chars,
    )
    if documentation:
        prompt += f"\n\n# DOCUMENTAÇÃO DO MODELO DE DADOS\n{documentation}"
    if working_queries:
        numbered = "\n".join(f"{index}. {query}" for index, query in enumerate(working_queries, start=1))
        prompt += f"\n\n# QUERIES QUE FUNCIONARAM PARA PERGUNTAS SIMILARES\nUse estas queries como referência:\n{numbered}"
    if history:
        prompt += f"\n\n# CONVERSA RECENTE\n{history}"
    return prompt
