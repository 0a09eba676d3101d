"""Best-effort rewriting of model-authored SQL identifiers.

The model is told to bracket-quote identifiers, but it still emits column
aliases and ``ORDER BY`` / ``GROUP BY`` identifiers that the SQLite dialect
rejects: unquoted CJK text, aliases with spaces or punctuation. Two passes run
over a token stream rather than raw text, so string literals that happen to
contain ``AS``, ``ORDER BY`` or ``GROUP BY`` are never touched:

1. **Alias pass**: every ``AS <alias>`` becomes a bare ASCII identifier, a
   bracket-quoted CJK identifier, or a synthetic ``col_<n>``.
2. **Grouping/ordering pass**: bare CJK identifiers inside ``ORDER BY`` and
   ``GROUP BY`` bodies are wrapped in brackets.

This is not a SQL parser; anything it does not recognise is passed through.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import cast

# Hiragana/Katakana, CJK Extension A, CJK Unified Ideographs, Hangul syllables,
# CJK Compatibility Ideographs.
CJK_RANGES = "\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff"

_CJK_CHAR = re.compile(f"[{CJK_RANGES}]")
_ASCII_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CJK_IDENTIFIER_CHARS = re.compile(f"^[{CJK_RANGES}A-Za-z0-9_]+$")
_BRACKETED = re.compile(r"^\[[^\]]+\]$")

_QUOTE_CHARS = "\"'`"
_BOUNDARY_PUNCT = frozenset({",", "(", ")", ";"})
# A grouping segment opens after a comma and closes at a comma, or at the
# parenthesis that ends an enclosing subquery.
_SEGMENT_START_PUNCT = frozenset({",", ";"})
_SEGMENT_END_PUNCT = frozenset({",", ";", ")"})


class TokenKind(StrEnum):
    STRING = "string"
    QUOTED = "quoted"
    BRACKET = "bracket"
    COMMENT = "comment"
    WORD = "word"
    SPACE = "space"
    PUNCT = "punct"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<comment>--[^\n]*|/\*.*?(?:\*/|\Z))
    |(?P<string>'(?:[^']|'')*(?:'|\Z))
    |(?P<quoted>"(?:[^"]|"")*(?:"|\Z)|`[^`]*(?:`|\Z))
    |(?P<bracket>\[[^\]]*(?:\]|\Z))
    |(?P<word>\w+)
    |(?P<space>\s+)
    |(?P<punct>.)
    """,
    re.VERBOSE | re.DOTALL,
)


def tokenize_sql(sql: str) -> list[Token]:
    """
    Split *sql* into classified tokens. Concatenating the token texts always
    reproduces the input exactly; unterminated literals run to end of input.
    """
    tokens: list[Token] = []
    for match in _TOKEN_PATTERN.finditer(sql):
        kind = cast(str, match.lastgroup)
        tokens.append(Token(TokenKind(kind), match.group()))
    return tokens


def contains_cjk(text: str) -> bool:
    return _CJK_CHAR.search(text) is not None


def is_ascii_identifier(text: str) -> bool:
    return _ASCII_IDENTIFIER.match(text) is not None


def is_cjk_identifier(text: str) -> bool:
    """CJK, ASCII letters, digits and underscore only, with at least one CJK character."""
    return _CJK_IDENTIFIER_CHARS.match(text) is not None and contains_cjk(text)


def sanitize_sql(sql: str) -> str:
    """
    Rewrite aliases and grouping/ordering identifiers so SQLite accepts them.

    Examples::

        >>> sanitize_sql("SELECT SUM(x) AS 总计 FROM t")
        'SELECT SUM(x) AS [总计] FROM t'
        >>> sanitize_sql('SELECT a AS "总 计" FROM t ORDER BY 城市 DESC')
        'SELECT a AS col_1 FROM t ORDER BY [城市] DESC'
    """
    if not sql:
        return sql
    tokens = tokenize_sql(sql)
    tokens = _rewrite_aliases(tokens)
    tokens = _bracket_grouping_identifiers(tokens)
    return "".join(token.text for token in tokens)


# ── Alias pass ────────────────────────────────────────────────────────────────


def _rewrite_aliases(tokens: list[Token]) -> list[Token]:
    out: list[Token] = []
    synthetic_index = 1
    i = 0
    while i < len(tokens):
        token = tokens[i]
        out.append(token)
        i += 1
        if token.kind is not TokenKind.WORD or token.text.upper() != "AS":
            continue

        while i < len(tokens) and tokens[i].kind is TokenKind.SPACE:
            out.append(tokens[i])
            i += 1
        end = _alias_span_end(tokens, i)
        if end == i:
            continue

        raw = "".join(t.text for t in tokens[i:end])
        replacement, used_synthetic = _rewrite_alias(raw, synthetic_index)
        if used_synthetic:
            synthetic_index += 1
        kind = TokenKind.BRACKET if replacement.startswith("[") else TokenKind.WORD
        out.append(Token(kind, replacement))
        i = end
    return out


def _alias_span_end(tokens: list[Token], start: int) -> int:
    """Return the exclusive end index of the alias starting at *start*."""
    if start >= len(tokens):
        return start
    first = tokens[start]
    if first.kind in (TokenKind.BRACKET, TokenKind.QUOTED, TokenKind.STRING):
        return start + 1
    end = start
    while end < len(tokens):
        token = tokens[end]
        if token.kind not in (TokenKind.WORD, TokenKind.PUNCT) or token.text in _BOUNDARY_PUNCT:
            break
        end += 1
    return end


def _rewrite_alias(raw: str, synthetic_index: int) -> tuple[str, bool]:
    """Return ``(replacement, consumed_synthetic_index)`` for one alias."""
    trimmed = raw.strip()
    if trimmed[:1] in _QUOTE_CHARS:
        trimmed = trimmed[1:]
    if trimmed[-1:] in _QUOTE_CHARS:
        trimmed = trimmed[:-1]
    if not trimmed:
        return raw, False
    if _BRACKETED.match(trimmed):
        return trimmed, False

    inner = trimmed.removeprefix("[").removesuffix("]")
    if is_ascii_identifier(inner):
        return inner, False
    if is_cjk_identifier(inner):
        return f"[{inner}]", False
    return f"col_{synthetic_index}", True


# ── Grouping / ordering pass ──────────────────────────────────────────────────


def _bracket_grouping_identifiers(tokens: list[Token]) -> list[Token]:
    out = list(tokens)
    in_clause = False
    i = 0
    while i < len(out):
        token = out[i]
        if token.kind is TokenKind.PUNCT and token.text == ";":
            in_clause = False
        elif token.kind is TokenKind.WORD and token.text.upper() in ("ORDER", "GROUP"):
            by_index = _next_significant(out, i + 1)
            if by_index is not None and out[by_index].text.upper() == "BY":
                in_clause = True
                i = by_index
        elif in_clause and token.kind is TokenKind.WORD and _is_standalone(out, i):
            if is_cjk_identifier(token.text):
                out[i] = Token(TokenKind.BRACKET, f"[{token.text}]")
        i += 1
    return out


def _next_significant(tokens: list[Token], start: int) -> int | None:
    """Index of the next WORD token after only whitespace, else None."""
    i = start
    while i < len(tokens) and tokens[i].kind is TokenKind.SPACE:
        i += 1
    if i < len(tokens) and tokens[i].kind is TokenKind.WORD:
        return i
    return None


def _is_standalone(tokens: list[Token], index: int) -> bool:
    """
    True when the word at *index* stands on its own within a grouping segment.

    A word directly after ``(`` is a function argument and never qualifies.
    """
    return _is_boundary(tokens, index - 1, _SEGMENT_START_PUNCT) and _is_boundary(
        tokens, index + 1, _SEGMENT_END_PUNCT
    )


def _is_boundary(tokens: list[Token], index: int, punct: frozenset[str]) -> bool:
    if index < 0 or index >= len(tokens):
        return True
    token = tokens[index]
    if token.kind in (TokenKind.SPACE, TokenKind.COMMENT):
        return True
    return token.kind is TokenKind.PUNCT and token.text in punct
