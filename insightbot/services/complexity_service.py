"""Keyword-based effort classification of an incoming question.

The tier decides how much history the model sees, how many tool rounds it may
use and how long the answer may be.
"""

import random
import re
import unicodedata
from dataclasses import dataclass


@dataclass(frozen=True)
class EffortTier:
    level: int
    history_messages: int
    max_rounds: int
    max_tokens: int
    max_chars: int
    send_filler: bool


TIERS = {
    0: EffortTier(level=0, history_messages=4, max_rounds=2, max_tokens=500, max_chars=1000, send_filler=False),
    1: EffortTier(level=1, history_messages=6, max_rounds=3, max_tokens=800, max_chars=1500, send_filler=True),
    2: EffortTier(level=2, history_messages=8, max_rounds=4, max_tokens=1200, max_chars=2500, send_filler=True),
    3: EffortTier(level=3, history_messages=10, max_rounds=5, max_tokens=1600, max_chars=3500, send_filler=True),
}

# Patterns run against accent-stripped lowercase text.
KEYWORD_CATEGORIES = {
    "comparison": r"\b(compar\w*|diferenca\w*|melhor que|pior que|contra)\b",
    "trend": r"\b(tendencia\w*|evolu\w*|crescimento|cresceu|caiu|queda|aumento|aumentou|diminui\w*)\b",
    "causal": r"\b(por que|porque|por qual motivo|motivo|causa\w*|explica\w*|razao)\b",
    "historical": r"\b(historico|ultimos \d+|ultimas \d+|desde|ao longo|entre \w+ e \w+|ano passado|mes passado)\b",
    "variance": r"\b(varia\w*|desvio\w*|oscila\w*|flutua\w*)\b",
    "projection": r"\b(proje\w*|previs\w*|estimativa\w*|expectativa\w*|meta\w*)\b",
    "ranking": r"\b(ranking|top \d+|maiores|menores|melhores|piores|principais)\b",
    "breakdown": r"\b(por (?:produto|cliente|vendedor|filial|loja|regiao|categoria|mes|dia|ano)|detalh\w*|quebr\w*|segment\w*|distribui\w*)\b",
}

_CATEGORY_PATTERNS = {name: re.compile(pattern) for name, pattern in KEYWORD_CATEGORIES.items()}
_VERSUS = re.compile(r"\b(vs\.?|versus|comparado com|em relacao a)(?=\s|$|[^\w])")
_YEAR = re.compile(r"\b(19|20)\d{2}\b")
_QUANTIFIER = re.compile(r"\b(todos|todas|cada|tudo)\b")

FILLER_MESSAGES = (
    "🔍 Consultando seus dados, só um instante...",
    "📊 Analisando as informações, já te respondo!",
    "⏳ Um momento, estou levantando os números...",
    "🔎 Deixa eu verificar isso nos seus dados...",
)


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def score_message(text: str | None) -> int:
    if not text:
        return 0
    folded = fold_accents(text)
    score = sum(1 for pattern in _CATEGORY_PATTERNS.values() if pattern.search(folded))
    if _VERSUS.search(folded):
        score += 2
    if _YEAR.search(folded):
        score += 1
    if _QUANTIFIER.search(folded):
        score += 1
    return score


def tier_for_score(score: int) -> EffortTier:
    if score <= 0:
        return TIERS[0]
    if score <= 2:
        return TIERS[1]
    if score <= 4:
        return TIERS[2]
    return TIERS[3]


def classify(text: str | None) -> EffortTier:
    return tier_for_score(score_message(text))


def pick_filler(rng: random.Random | None = None) -> str:
    return (rng or random).choice(FILLER_MESSAGES)
