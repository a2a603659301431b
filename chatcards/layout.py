"""
Lay out markdown fragments with real font metrics.

The same layout is used to measure a fragment while paginating and to
draw it onto a card, so a fragment that fits by measurement also fits on
the exported image.
"""

from __future__ import annotations

import hashlib
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont

from .markup import MATH_PLACEHOLDER_PATTERN, MarkdownRenderer, MathSpan


CARD_SIZE = (1080, 1800)
CARD_MARGIN = 48
ITEM_PADDING_X = 28
ITEM_PADDING = 56
ROLE_HEADER_HEIGHT = 52
TURN_GAP = 24
CONTENT_BUDGET = 1600
CONTENT_WIDTH = CARD_SIZE[0] - CARD_MARGIN * 2 - ITEM_PADDING_X * 2
DEFAULT_FONT_SIZE = 34
DEFAULT_LINE_SPACING = 1.6
DEFAULT_SCALE = 2

BLOCK_GAP = 18
TIGHT_GAP = 6
LIST_INDENT = 44
QUOTE_INDENT = 28
QUOTE_RULE_WIDTH = 5
CODE_PADDING = 18
CELL_PADDING = 10
HEADING_FACTORS = {1: 1.45, 2: 1.3, 3: 1.18, 4: 1.08, 5: 1.0, 6: 1.0}
CODE_FACTOR = 0.8

DEFAULT_FONT_FILENAME = "LXGWWenKaiLite-Bold.ttf"
DEFAULT_FONT_URL = (
    "https://github.com/lxgw/LxgwWenKai-Lite/releases/download/v1.330/"
    f"{DEFAULT_FONT_FILENAME}"
)
DEFAULT_FONT_SHA256 = (
    "25a4d0e009f330481a299f0c09cd63ef1a3ab284e142236f6d3f4cd7ff7a37d3"
)
FONT_PATTERNS = (
    "SourceHanSansSC-*.otf",
    "SourceHanSansSC-*.ttc",
    "SourceHanSans*.otf",
    "SourceHanSans*.ttc",
    "NotoSansCJK*.otf",
    "NotoSansCJK*.ttc",
    "NotoSansSC*.otf",
    "NotoSansSC*.ttc",
    "思源黑体*.otf",
    "思源黑体*.ttc",
    "DejaVuSans.ttf",
)
WRAP_TOKEN_PATTERN = re.compile(
    r"[^\s\u2e80-\u9fff\uac00-\ud7af\uf900-\ufaff\uff00-\uffef]+\s*|\s+|."
)


class LayoutUnavailableError(RuntimeError):
    """Raised when no font can be loaded for text layout."""


class Measure(Protocol):
    def __call__(self, fragment: str, extra_height: int = 0) -> int:
        ...


def _resources_dir() -> Path:
    return Path(__file__).resolve().parent / "resources" / "fonts"


def _download_default_font(target: Path, debug: bool = False) -> None:
    if debug:
        print(f"[DEBUG] Downloading default font to {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    response = requests.get(DEFAULT_FONT_URL, timeout=60)
    response.raise_for_status()
    data = response.content
    digest = hashlib.sha256(data).hexdigest()
    if digest != DEFAULT_FONT_SHA256:
        raise RuntimeError(
            "Default font checksum mismatch; the download may be incomplete."
        )
    target.write_bytes(data)


def ensure_default_font(debug: bool = False, download: bool = True) -> Optional[Path]:
    target = _resources_dir() / DEFAULT_FONT_FILENAME
    if target.exists():
        return target
    if not download:
        return None
    try:
        _download_default_font(target, debug=debug)
    except (requests.RequestException, RuntimeError, OSError) as exc:
        if debug:
            print(f"[DEBUG] Failed to download default font: {exc}")
        return None
    return target


def _candidate_font_paths(
    explicit: Optional[Path] = None,
    debug: bool = False,
    download: bool = True,
) -> Iterator[Path]:
    if explicit:
        yield explicit.resolve()
        return

    default_font = ensure_default_font(debug=debug, download=download)
    if default_font:
        yield default_font

    search_dirs: List[Path] = []
    windir = os.environ.get("WINDIR")
    if windir:
        search_dirs.append(Path(windir) / "Fonts")
    search_dirs.extend(
        [
            Path("/System/Library/Fonts"),
            Path("/Library/Fonts"),
            Path("/System/Library/Fonts/Supplemental"),
            Path("/usr/share/fonts"),
            Path("/usr/local/share/fonts"),
        ]
    )

    seen: set[Path] = set()
    for pattern in FONT_PATTERNS:
        for directory in search_dirs:
            if not directory.exists():
                continue
            for path in sorted(directory.rglob(pattern)):
                if path not in seen:
                    seen.add(path)
                    yield path


def load_font(
    font_path: Optional[Path],
    font_size: int,
    font_index: int = 0,
    debug: bool = False,
    download: bool = True,
) -> ImageFont.FreeTypeFont:
    for candidate in _candidate_font_paths(font_path, debug=debug, download=download):
        try:
            font = ImageFont.truetype(
                str(candidate),
                font_size,
                index=font_index,
                layout_engine=ImageFont.Layout.BASIC,
            )
        except OSError:
            continue
        if debug:
            print(f"[DEBUG] Using font {candidate}")
        return font

    raise LayoutUnavailableError(
        "No usable font found. Pass --font with a TrueType/OpenType file "
        "or allow the default LXGWWenKaiLite font to be downloaded."
    )


def font_line_height(font: ImageFont.FreeTypeFont, spacing_multiplier: float) -> int:
    ascent, descent = font.getmetrics()
    return max(1, int((ascent + descent) * spacing_multiplier))


@dataclass
class Typography:
    """A base font plus the size variants used by the layout, at one scale."""

    font: ImageFont.FreeTypeFont
    scale: float = 1.0
    line_spacing: float = DEFAULT_LINE_SPACING
    _variants: Dict[int, ImageFont.FreeTypeFont] = field(default_factory=dict, repr=False)

    @classmethod
    def load(
        cls,
        font_path: Optional[Path] = None,
        font_size: int = DEFAULT_FONT_SIZE,
        font_index: int = 0,
        scale: float = DEFAULT_SCALE,
        line_spacing: float = DEFAULT_LINE_SPACING,
        debug: bool = False,
        download: bool = True,
    ) -> "Typography":
        font = load_font(
            font_path,
            max(1, int(round(font_size * scale))),
            font_index,
            debug=debug,
            download=download,
        )
        return cls(font=font, scale=scale, line_spacing=line_spacing)

    @classmethod
    def builtin(
        cls,
        font_size: int = DEFAULT_FONT_SIZE,
        scale: float = DEFAULT_SCALE,
        line_spacing: float = DEFAULT_LINE_SPACING,
    ) -> "Typography":
        """Pillow's bundled font, for drawing when no TrueType font loads."""
        font = ImageFont.load_default(size=max(1, int(round(font_size * scale))))
        if not isinstance(font, ImageFont.FreeTypeFont):
            raise LayoutUnavailableError("Pillow was built without FreeType support.")
        return cls(font=font, scale=scale, line_spacing=line_spacing)

    def px(self, value: float) -> int:
        return int(round(value * self.scale))

    def variant(self, factor: float) -> ImageFont.FreeTypeFont:
        size = max(1, int(round(self.font.size * factor)))
        if size == self.font.size:
            return self.font
        if size not in self._variants:
            self._variants[size] = self.font.font_variant(size=size)
        return self._variants[size]

    def line_height(self, font: ImageFont.FreeTypeFont) -> int:
        return font_line_height(font, self.line_spacing)


@dataclass
class TextRun:
    x: int
    y: int
    text: str
    font: ImageFont.FreeTypeFont
    color: str = "text"


@dataclass
class Rule:
    box: Tuple[int, int, int, int]
    color: str


@dataclass
class Layout:
    width: int
    height: int
    runs: List[TextRun] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)

    def draw(self, draw: ImageDraw.ImageDraw, origin: Tuple[int, int], palette: Dict[str, object]) -> None:
        ox, oy = origin
        for rule in self.rules:
            x0, y0, x1, y1 = rule.box
            draw.rectangle((ox + x0, oy + y0, ox + x1, oy + y1), fill=palette[rule.color])
        for run in self.runs:
            draw.text((ox + run.x, oy + run.y), run.text, font=run.font, fill=palette[run.color])


def _measure_text_width(
    draw: ImageDraw.ImageDraw,
    text: str,
    font: ImageFont.FreeTypeFont,
) -> float:
    return draw.textlength(text, font=font)


def wrap_lines(
    draw: ImageDraw.ImageDraw,
    text: str,
    font: ImageFont.FreeTypeFont,
    max_width: int,
) -> List[str]:
    """Greedy line breaking.

    Latin words move to the next line whole; CJK characters and words wider
    than the line break anywhere.
    """
    lines: List[str] = []
    for paragraph in text.split("\n"):
        paragraph = paragraph.rstrip("\r")
        if not paragraph.strip():
            lines.append("")
            continue
        current = ""
        for token in WRAP_TOKEN_PATTERN.findall(paragraph):
            candidate = current + token
            if _measure_text_width(draw, candidate.rstrip(), font) <= max_width:
                current = candidate
                continue
            if current.strip():
                lines.append(current.rstrip())
                current = ""
            token = token.lstrip() if not current else token
            if _measure_text_width(draw, token.rstrip(), font) <= max_width:
                current = token
                continue
            for ch in token:
                candidate = current + ch
                if _measure_text_width(draw, candidate.rstrip(), font) <= max_width or not current:
                    current = candidate
                else:
                    lines.append(current.rstrip())
                    current = ch.lstrip()
        if current.strip():
            lines.append(current.rstrip())
    return lines


def _inline_text(token, formulas: Sequence[MathSpan]) -> str:
    if not token.children:
        return _restore_formulas(token.content or "", formulas)
    parts: List[str] = []
    for child in token.children:
        if child.type in ("text", "code_inline", "html_inline"):
            parts.append(child.content)
        elif child.type in ("softbreak", "hardbreak"):
            parts.append("\n")
        elif child.type == "image":
            parts.append(child.content or "[image]")
    return _restore_formulas("".join(parts), formulas)


def _restore_formulas(text: str, formulas: Sequence[MathSpan]) -> str:
    def repl(match: re.Match[str]) -> str:
        index = int(match.group(2))
        if index >= len(formulas):
            return match.group(0)
        return formulas[index].source

    return MATH_PLACEHOLDER_PATTERN.sub(repl, text)


def _is_display_math(token, formulas: Sequence[MathSpan]) -> bool:
    match = MATH_PLACEHOLDER_PATTERN.fullmatch((token.content or "").strip())
    return bool(match and match.group(1) == "BLOCK" and int(match.group(2)) < len(formulas))


@dataclass
class _ListState:
    ordered: bool
    counter: int


class _Flow:
    """Walks markdown-it block tokens and stacks them vertically."""

    def __init__(self, draw: ImageDraw.ImageDraw, typography: Typography, width: int) -> None:
        self.draw = draw
        self.typo = typography
        self.width = width
        self.layout = Layout(width=width, height=0)
        self.y = 0
        self.indent = 0
        self.pending_gap = 0
        self.lists: List[_ListState] = []
        self.quotes: List[Tuple[int, int]] = []
        self.pending_marker: Optional[str] = None
        self.block_font = typography.font
        self.block_color = "text"
        self.tight = False
        self.table_rows: Optional[List[List[str]]] = None
        self.header_rows = 0

    def start_block(self) -> None:
        if self.y > 0 or self.layout.runs or self.layout.rules:
            self.y += self.pending_gap
        self.pending_gap = 0

    def end_block(self, gap: Optional[int] = None) -> None:
        self.pending_gap = max(self.pending_gap, self.typo.px(BLOCK_GAP) if gap is None else gap)

    def _available(self) -> int:
        return max(1, self.width - self.indent)

    def emit_marker(self, font) -> None:
        if not self.pending_marker:
            return
        marker_x = self.indent - self.typo.px(LIST_INDENT) + self.typo.px(4)
        self.layout.runs.append(TextRun(marker_x, self.y, self.pending_marker, font, "accent"))
        self.pending_marker = None

    def text_block(self, text: str, font, color: str = "text", centered: bool = False) -> None:
        self.start_block()
        line_height = self.typo.line_height(font)
        self.emit_marker(font)
        for line in wrap_lines(self.draw, text, font, self._available()):
            x = self.indent
            if centered and line:
                x += max(0, (self._available() - int(_measure_text_width(self.draw, line, font))) // 2)
            if line:
                self.layout.runs.append(TextRun(x, self.y, line, font, color))
            self.y += line_height

    def code_block(self, content: str) -> None:
        self.start_block()
        self.emit_marker(self.typo.font)
        font = self.typo.variant(CODE_FACTOR)
        pad = self.typo.px(CODE_PADDING)
        inner = max(1, self._available() - pad * 2)
        lines = wrap_lines(self.draw, content.rstrip("\n") or " ", font, inner)
        line_height = self.typo.line_height(font)
        top = self.y
        bottom = top + pad * 2 + line_height * len(lines)
        self.layout.rules.append(Rule((self.indent, top, self.width - 1, bottom - 1), "code_bg"))
        y = top + pad
        for line in lines:
            if line:
                self.layout.runs.append(TextRun(self.indent + pad, y, line, font, "code"))
            y += line_height
        self.y = bottom
        self.end_block()

    def thematic_break(self) -> None:
        self.start_block()
        thickness = max(1, self.typo.px(2))
        mid = self.y + self.typo.px(BLOCK_GAP)
        self.layout.rules.append(Rule((self.indent, mid, self.width - 1, mid + thickness - 1), "grid"))
        self.y = mid + thickness + self.typo.px(BLOCK_GAP)
        self.end_block()

    def table(self, rows: List[List[str]], header_rows: int) -> None:
        if not rows:
            return
        self.start_block()
        columns = max(len(row) for row in rows)
        col_width = max(1, self._available() // columns)
        pad = self.typo.px(CELL_PADDING)
        font = self.typo.font
        line_height = self.typo.line_height(font)
        thickness = max(1, self.typo.px(1))
        right = self.indent + col_width * columns
        self.layout.rules.append(Rule((self.indent, self.y, right, self.y + thickness - 1), "grid"))
        self.y += thickness
        for row_index, row in enumerate(rows):
            wrapped = [
                wrap_lines(self.draw, cell, font, max(1, col_width - pad * 2)) for cell in row
            ]
            row_lines = max([len(cell) for cell in wrapped] + [1])
            row_height = row_lines * line_height + pad * 2
            if row_index < header_rows:
                self.layout.rules.append(
                    Rule((self.indent, self.y, right, self.y + row_height - 1), "code_bg")
                )
            for col_index, cell_lines in enumerate(wrapped):
                y = self.y + pad
                x = self.indent + col_index * col_width + pad
                for line in cell_lines:
                    if line:
                        self.layout.runs.append(TextRun(x, y, line, font, "text"))
                    y += line_height
            self.y += row_height
            self.layout.rules.append(Rule((self.indent, self.y, right, self.y + thickness - 1), "grid"))
            self.y += thickness
        self.end_block()

    def open_quote(self) -> None:
        self.start_block()
        self.quotes.append((self.y, self.indent))
        self.indent += self.typo.px(QUOTE_INDENT)

    def close_quote(self) -> None:
        top, indent = self.quotes.pop()
        width = max(1, self.typo.px(QUOTE_RULE_WIDTH))
        self.layout.rules.append(Rule((indent, top, indent + width - 1, max(top, self.y - 1)), "quote"))
        self.indent = indent
        self.end_block()

    def finish(self) -> Layout:
        self.layout.height = self.y
        return self.layout


def layout_markdown(
    fragment: str,
    typography: Typography,
    width: int,
    renderer: MarkdownRenderer,
    draw: Optional[ImageDraw.ImageDraw] = None,
) -> Layout:
    """Lay out ``fragment`` in a column ``width`` pixels wide (at scale)."""
    if draw is None:
        draw = ImageDraw.Draw(Image.new("RGB", (1, 1)))
    flow = _Flow(draw, typography, width)
    if not fragment.strip():
        return flow.finish()

    tokens, formulas = renderer.tokens(fragment)
    context = "paragraph"
    heading_level = 1
    current_row: Optional[List[str]] = None
    in_head = False

    for token in tokens:
        kind = token.type
        if kind == "heading_open":
            context = "heading"
            heading_level = int(token.tag[1:]) if token.tag[1:].isdigit() else 1
        elif kind == "paragraph_open":
            context = "paragraph"
            flow.tight = bool(token.hidden)
        elif kind == "inline":
            if flow.table_rows is not None:
                if current_row is not None:
                    current_row.append(_inline_text(token, formulas))
                continue
            text = _inline_text(token, formulas)
            if context == "heading":
                font = typography.variant(HEADING_FACTORS.get(heading_level, 1.0))
                flow.text_block(text, font, "heading")
            elif _is_display_math(token, formulas):
                flow.text_block(text, typography.font, "math", centered=True)
            elif flow.quotes:
                flow.text_block(text, typography.font, "muted")
            else:
                flow.text_block(text, typography.font, "text")
        elif kind == "heading_close":
            flow.end_block()
            context = "paragraph"
        elif kind == "paragraph_close":
            flow.end_block(typography.px(TIGHT_GAP) if flow.tight else None)
            flow.tight = False
        elif kind in ("bullet_list_open", "ordered_list_open"):
            start = token.attrGet("start") if kind == "ordered_list_open" else None
            counter = int(start) - 1 if start is not None else 0
            flow.lists.append(_ListState(ordered=kind == "ordered_list_open", counter=counter))
            flow.indent += typography.px(LIST_INDENT)
        elif kind in ("bullet_list_close", "ordered_list_close"):
            flow.lists.pop()
            flow.indent -= typography.px(LIST_INDENT)
            flow.end_block()
        elif kind == "list_item_open":
            state = flow.lists[-1]
            state.counter += 1
            flow.pending_marker = f"{state.counter}." if state.ordered else "•"
        elif kind == "list_item_close":
            flow.pending_marker = None
        elif kind == "blockquote_open":
            flow.open_quote()
        elif kind == "blockquote_close":
            flow.close_quote()
        elif kind in ("fence", "code_block"):
            flow.code_block(_restore_formulas(token.content, formulas))
        elif kind == "hr":
            flow.thematic_break()
        elif kind == "table_open":
            flow.table_rows = []
            flow.header_rows = 0
        elif kind == "thead_open":
            in_head = True
        elif kind == "thead_close":
            in_head = False
        elif kind == "tr_open":
            current_row = []
        elif kind == "tr_close":
            if flow.table_rows is not None and current_row is not None:
                flow.table_rows.append(current_row)
                if in_head:
                    flow.header_rows += 1
            current_row = None
        elif kind == "table_close":
            rows = flow.table_rows or []
            flow.table_rows = None
            flow.table(rows, flow.header_rows)

    return flow.finish()


class LayoutOracle:
    """Measure rendered markdown height in logical (unscaled) pixels."""

    def __init__(
        self,
        typography: Typography,
        content_width: int = CONTENT_WIDTH,
        renderer: Optional[MarkdownRenderer] = None,
        debug: bool = False,
    ) -> None:
        self.typography = typography
        self.content_width = content_width
        self.renderer = renderer if renderer is not None else MarkdownRenderer(debug=debug)
        self.debug = debug
        self._scratch = ImageDraw.Draw(Image.new("RGB", (1, 1)))
        self._cache: Dict[str, int] = {}
        self.calls = 0

    def layout(self, fragment: str) -> Layout:
        return layout_markdown(
            fragment,
            self.typography,
            self.typography.px(self.content_width),
            self.renderer,
            draw=self._scratch,
        )

    def content_height(self, fragment: str) -> int:
        if fragment not in self._cache:
            self.calls += 1
            scaled = self.layout(fragment).height
            self._cache[fragment] = int(math.ceil(scaled / self.typography.scale))
        return self._cache[fragment]

    def __call__(self, fragment: str, extra_height: int = 0) -> int:
        return self.content_height(fragment) + extra_height

    measure = __call__
