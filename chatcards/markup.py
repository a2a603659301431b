"""Markdown to HTML with math formulas protected from the markdown parser."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from markdown_it import MarkdownIt
from markdown_it.token import Token


MATH_BLOCK_PATTERN = re.compile(r"\$\$([\s\S]*?)\$\$")
MATH_INLINE_PATTERN = re.compile(r"\$([^$\n]+?)\$")
MATH_PLACEHOLDER_PATTERN = re.compile(r"%%MATH_(BLOCK|INLINE)_(\d+)%%")
MATH_BLOCK_TEMPLATE = "%%MATH_BLOCK_{index}%%"
MATH_INLINE_TEMPLATE = "%%MATH_INLINE_{index}%%"
MULTILINE_STRONG_PATTERN = re.compile(r"\*\*(\S[\s\S]*?\S)\*\*")
MULTILINE_EM_PATTERN = re.compile(r"(?<![*\w])\*(?![*\s])([^*]*?\n[^*]*?)(?<![*\s])\*(?![*\w])")
FENCE_LINE_PATTERN = re.compile(r"^\s*(?:```|~~~)")
INLINE_CODE_PATTERN = re.compile(r"(`+)(?:(?!\n[ \t]*\n)[\s\S])*?\1")
PARAGRAPH_BREAK_PATTERN = re.compile(r"(\n[ \t]*\n\s*)")


@dataclass(frozen=True)
class MathSpan:
    display: bool
    formula: str
    source: str


@dataclass
class ProtectedText:
    text: str
    formulas: List[MathSpan]


def split_code(text: str) -> List[Tuple[bool, str]]:
    """Cut ``text`` into ``(is_code, piece)`` runs.

    Fenced blocks and inline code spans are code; joining the pieces gives
    back ``text``. An unclosed fence runs to the end.
    """
    runs: List[Tuple[bool, str]] = []
    prose: List[str] = []
    fence: List[str] = []

    def flush_prose() -> None:
        chunk = "".join(prose)
        prose.clear()
        start = 0
        for match in INLINE_CODE_PATTERN.finditer(chunk):
            if match.start() > start:
                runs.append((False, chunk[start:match.start()]))
            runs.append((True, match.group(0)))
            start = match.end()
        if start < len(chunk):
            runs.append((False, chunk[start:]))

    for line in text.splitlines(keepends=True):
        is_fence = bool(FENCE_LINE_PATTERN.match(line))
        if fence:
            fence.append(line)
            if is_fence:
                runs.append((True, "".join(fence)))
                fence.clear()
            continue
        if is_fence:
            flush_prose()
            fence.append(line)
            continue
        prose.append(line)

    flush_prose()
    if fence:
        runs.append((True, "".join(fence)))
    return runs


def map_prose(text: str, transform: Callable[[str], str]) -> str:
    """Apply ``transform`` to everything outside code."""
    return "".join(piece if is_code else transform(piece) for is_code, piece in split_code(text))


def protect_math(text: str) -> ProtectedText:
    """Swap ``$$...$$`` and ``$...$`` outside code for opaque placeholders."""
    formulas: List[MathSpan] = []

    def block_repl(match: re.Match[str]) -> str:
        formulas.append(
            MathSpan(display=True, formula=match.group(1).strip(), source=match.group(0))
        )
        return MATH_BLOCK_TEMPLATE.format(index=len(formulas) - 1)

    def inline_repl(match: re.Match[str]) -> str:
        formulas.append(
            MathSpan(display=False, formula=match.group(1).strip(), source=match.group(0))
        )
        return MATH_INLINE_TEMPLATE.format(index=len(formulas) - 1)

    def protect(piece: str) -> str:
        piece = MATH_BLOCK_PATTERN.sub(block_repl, piece)
        return MATH_INLINE_PATTERN.sub(inline_repl, piece)

    return ProtectedText(text=map_prose(text, protect), formulas=formulas)


def restore_math(rendered: str, formulas: List[MathSpan]) -> str:
    """Put formulas back, display ones wrapped for a later math typesetting pass."""

    def repl(match: re.Match[str]) -> str:
        index = int(match.group(2))
        if index >= len(formulas):
            return match.group(0)
        span = formulas[index]
        source = html.escape(span.source, quote=False)
        if span.display:
            return f'<div class="math-display">{source}</div>'
        return source

    return MATH_PLACEHOLDER_PATTERN.sub(repl, rendered)


def fold_emphasis_newlines(text: str) -> str:
    """Bold and italic spans are not honored across line breaks.

    Folding stays inside one paragraph and never touches code.
    """

    def fold(match: re.Match[str]) -> str:
        return match.group(0).replace("\n", " ")

    def fold_paragraph(paragraph: str) -> str:
        folded = MULTILINE_STRONG_PATTERN.sub(fold, paragraph)
        return MULTILINE_EM_PATTERN.sub(fold, folded)

    def fold_prose(piece: str) -> str:
        parts = PARAGRAPH_BREAK_PATTERN.split(piece)
        return "".join(
            part if index % 2 else fold_paragraph(part) for index, part in enumerate(parts)
        )

    return map_prose(text, fold_prose)


def build_markdown_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": False, "breaks": True})
    md.enable(["table", "strikethrough"])
    return md


def plain_text_tokens(text: str) -> List[Token]:
    """Paragraph tokens carrying ``text`` verbatim, for when parsing fails."""
    tokens: List[Token] = []
    for paragraph in re.split(r"\n\s*\n", text):
        if not paragraph.strip():
            continue
        tokens.append(Token("paragraph_open", "p", 1, block=True))
        tokens.append(Token("inline", "", 0, content=paragraph.strip(), children=[]))
        tokens.append(Token("paragraph_close", "p", -1, block=True))
    return tokens


class MarkdownRenderer:
    """Render markdown fragments to HTML or to a markdown-it token stream.

    One parser instance is built per renderer and reused for every
    fragment. Either output falls back to the fragment as plain text when
    the parser fails.
    """

    def __init__(self, parser: Optional[MarkdownIt] = None, debug: bool = False) -> None:
        self.parser = parser if parser is not None else build_markdown_parser()
        self.debug = debug

    def prepare(self, fragment: str) -> ProtectedText:
        protected = protect_math(fragment)
        protected.text = fold_emphasis_newlines(protected.text)
        return protected

    def tokens(self, fragment: str) -> Tuple[List[Token], List[MathSpan]]:
        protected = self.prepare(fragment)
        try:
            return self.parser.parse(protected.text), protected.formulas
        except Exception as exc:  # noqa: BLE001
            if self.debug:
                print(f"[DEBUG] Markdown parsing failed, laying out plain text: {exc}")
            return plain_text_tokens(fragment), []

    def render(self, fragment: str) -> str:
        protected = self.prepare(fragment)
        try:
            rendered = self.parser.render(protected.text)
        except Exception as exc:  # noqa: BLE001
            if self.debug:
                print(f"[DEBUG] Markdown rendering failed, using plain text: {exc}")
            return plain_text_html(fragment)
        return restore_math(rendered, protected.formulas)


def plain_text_html(text: str) -> str:
    escaped = html.escape(text)
    paragraphs = [p for p in re.split(r"\n\s*\n", escaped) if p.strip()]
    return "".join(
        "<p>{}</p>\n".format(p.strip().replace("\n", "<br />\n")) for p in paragraphs
    )
