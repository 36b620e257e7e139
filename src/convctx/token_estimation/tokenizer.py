"""Heuristic tokenizers: one estimate per tokenizer profile, no vocabulary files."""

from __future__ import annotations

import json
import logging
import math
import re
from enum import StrEnum
from typing import Any

from ..errors import ErrorReporter, report_unexpected

logger = logging.getLogger(__name__)


class TokenizerType(StrEnum):
    """Token-estimation profile associated with a model family."""

    DEFAULT = "default"
    DEEPSEEK = "deepseek"


class ContentMode(StrEnum):
    """Whether an attachment is sent whole or as a truncated preview."""

    FULL = "full"
    PREVIEW = "preview"


def is_deepseek_model(model_id: str | None) -> bool:
    if not model_id:
        return False
    return "deepseek" in model_id.lower()


def tokenizer_type_for(model_id: str | None) -> TokenizerType:
    return TokenizerType.DEEPSEEK if is_deepseek_model(model_id) else TokenizerType.DEFAULT


# ---------------------------------------------------------------------------
# Character classes
# ---------------------------------------------------------------------------

_CJK = (
    "\u3400-\u4dbf"
    "\u4e00-\u9fff"
    "\uf900-\ufaff"
    "\U00020000-\U0002a6df"
    "\U0002a700-\U0002b73f"
    "\U0002b740-\U0002b81f"
    "\U0002b820-\U0002ceaf"
    "\U0002f800-\U0002fa1f"
)
_CJK_RE = re.compile(f"[{_CJK}]")

# Pieces for the default profile: CJK ideographs, letter runs, digit runs,
# whitespace runs, then any other single character.
_PIECE_RE = re.compile(f"([{_CJK}])|([^\\W\\d_{_CJK}]+)|(\\d+)|(\\s+)|(.)", re.DOTALL)

_CHARS_PER_WORD_TOKEN = 4
_DIGITS_PER_TOKEN = 3


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def estimate_default_tokens(text: str) -> int:
    """BPE-like density estimate.

    A letter run costs one token per four characters, digits are grouped in
    threes, each punctuation or other symbol is one token, each CJK
    ideograph one token. A single space is folded into the next word;
    longer whitespace runs and newlines cost one token.
    """
    if not text:
        return 0
    total = 0
    for cjk, word, digits, space, other in _PIECE_RE.findall(text):
        if cjk:
            total += 1
        elif word:
            total += math.ceil(len(word) / _CHARS_PER_WORD_TOKEN)
        elif digits:
            total += math.ceil(len(digits) / _DIGITS_PER_TOKEN)
        elif space:
            if space != " ":
                total += 1
        elif other:
            total += 1
    return total


def estimate_deepseek_tokens(text: str) -> int:
    """Linear estimate for DeepSeek models.

    CJK characters weigh 0.6, everything else 0.3, a whitespace run 1.
    The result is rounded up with a floor of 1, so even empty input costs
    one token.
    """
    total = 0.0
    prev_space = False
    for char in text:
        if _CJK_RE.match(char):
            total += 0.6
            prev_space = False
        elif char.isspace():
            if not prev_space:
                total += 1
                prev_space = True
        else:
            total += 0.3
            prev_space = False
    return max(math.ceil(round(total, 6)), 1)


def estimate_tokens(
    content: Any,
    tokenizer: TokenizerType = TokenizerType.DEFAULT,
    reporter: ErrorReporter | None = None,
) -> int:
    """Estimate tokens of *content* under *tokenizer*.

    Non-string content is JSON-serialised first. Unexpected failures are
    reported and estimate to 0.
    """
    try:
        text = content if isinstance(content, str) else json.dumps(content, default=str)
        if tokenizer == TokenizerType.DEEPSEEK:
            return estimate_deepseek_tokens(text)
        return estimate_default_tokens(text)
    except Exception as exc:
        logger.warning("Token estimation failed, counting 0: %s", exc)
        report_unexpected(reporter, exc)
        return 0


def slice_text_by_token_limit(
    text: str, limit: int, tokenizer: TokenizerType = TokenizerType.DEFAULT
) -> str:
    """Longest prefix of *text*, in 100-char steps, whose estimate fits *limit*."""
    step = 100
    kept: list[str] = []
    used = 0
    for start in range(0, len(text), step):
        part = text[start : start + step]
        cost = estimate_tokens(part, tokenizer)
        if used + cost > limit:
            break
        kept.append(part)
        used += cost
    return "".join(kept)
