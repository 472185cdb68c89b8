"""Final clean-up of model output before it reaches the user."""

import re

FALLBACK_REPLY = "Desculpe, não consegui processar sua pergunta. Tente novamente!"
MIN_REPLY_CHARS = 20
DEFAULT_MAX_CHARS = 1000

_QUERY_BLOCK = re.compile(r"```\s*(?:dax|sql)\b.*?```", re.IGNORECASE | re.DOTALL)
_CODE_FENCE = re.compile(r"```.*?```", re.DOTALL)
_STRAY_FENCE = re.compile(r"```")
_HTML_TAG = re.compile(r"<[^>]+>")
_ERROR_FRAGMENT = re.compile(r"(?im)\b(?:error|erro)\s*:[^\n]*")
_BLANK_LINES = re.compile(r"\n{3,}")
_TRAILING_SPACES = re.compile(r"[ \t]+\n")


def sanitize_response(text: str | None, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    if not text:
        return FALLBACK_REPLY

    cleaned = _QUERY_BLOCK.sub("", text)
    cleaned = _CODE_FENCE.sub("", cleaned)
    cleaned = _STRAY_FENCE.sub("", cleaned)
    cleaned = _HTML_TAG.sub("", cleaned)
    cleaned = _ERROR_FRAGMENT.sub("", cleaned)
    cleaned = _TRAILING_SPACES.sub("\n", cleaned)
    cleaned = _BLANK_LINES.sub("\n\n", cleaned).strip()

    if len(cleaned) > max_chars:
        cleaned = cleaned[: max(max_chars - 3, 0)].rstrip() + "..."

    if len(cleaned) < MIN_REPLY_CHARS:
        return FALLBACK_REPLY
    return cleaned
