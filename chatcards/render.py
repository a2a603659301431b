from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageStat

from .layout import CARD_MARGIN, CARD_SIZE, ITEM_PADDING_X, LayoutOracle, wrap_lines
from .models import Card, ContentCard, CoverCard, DialogueCard
from .pagination import PaginationConfig
from .parser import Role


COLOR_ALIASES = {
    "paper": "#faf8f5",
    "warmyellow": "#f6e7c1",
    "warm-yellow": "#f6e7c1",
    "warm": "#f6e7c1",
    "warmgold": "#f3c97a",
    "warm-gold": "#f3c97a",
    "softyellow": "#f7e6b5",
    "soft-yellow": "#f7e6b5",
    "night": "#1e1f24",
}
DEFAULT_BACKGROUND = "paper"
SERIES_TAG = "#ChatWithAI"
ROLE_ACCENTS = {Role.USER: "#e8833a", Role.ASSISTANT: "#4f7cf7"}
ITEM_RADIUS = 18
SMALL_FACTOR = 0.6
NAME_FACTOR = 0.85
TITLE_FACTOR = 1.6


def parse_color(color_value: str) -> Tuple[int, int, int]:
    normalized_key = re.sub(r"[^a-z0-9]+", "", color_value.lower())
    if normalized_key in COLOR_ALIASES:
        color_value = COLOR_ALIASES[normalized_key]

    if not color_value.startswith("#") or len(color_value) not in (4, 7):
        raise ValueError(f"Unsupported color value: {color_value}")
    if len(color_value) == 4:
        r = int(color_value[1] * 2, 16)
        g = int(color_value[2] * 2, 16)
        b = int(color_value[3] * 2, 16)
    else:
        r = int(color_value[1:3], 16)
        g = int(color_value[3:5], 16)
        b = int(color_value[5:7], 16)
    return (r, g, b)


def determine_text_color(
    image: Image.Image, override: Optional[str] = None
) -> Tuple[int, int, int]:
    if override:
        return parse_color(override)

    stat = ImageStat.Stat(image.convert("L"))
    avg_luminance = stat.mean[0]
    return (34, 34, 34) if avg_luminance > 170 else (240, 240, 240)


def _blend(color: Tuple[int, int, int], other: Tuple[int, int, int], amount: float) -> Tuple[int, int, int]:
    return tuple(int(c + (o - c) * amount) for c, o in zip(color, other))  # type: ignore[return-value]


@dataclass
class CoverOptions:
    title: str = "A deep conversation with AI"
    subtitle: str = ""
    topic: str = ""
    signature: str = "@Vanilla"
    volume: str = "1"


@dataclass
class CardStyle:
    background: str = DEFAULT_BACKGROUND
    text_color: Optional[str] = None
    user_name: str = "Me"
    assistant_name: str = "Gemini"
    series_tag: str = SERIES_TAG
    continuation_hint: str = "(continued)"
    end_mark: str = "(end)"

    def role_name(self, role: Role) -> str:
        return self.user_name if role is Role.USER else self.assistant_name


class CardRenderer:
    """Draw cards with the layout the pagination oracle measured."""

    def __init__(
        self,
        oracle: LayoutOracle,
        style: Optional[CardStyle] = None,
        cover: Optional[CoverOptions] = None,
        config: Optional[PaginationConfig] = None,
        debug: bool = False,
    ) -> None:
        self.oracle = oracle
        self.typo = oracle.typography
        self.style = style or CardStyle()
        self.cover = cover or CoverOptions()
        self.config = config or PaginationConfig()
        self.debug = debug
        self.size = (self.typo.px(CARD_SIZE[0]), self.typo.px(CARD_SIZE[1]))

    def _canvas(self) -> Tuple[Image.Image, Dict[str, object]]:
        background_path = Path(self.style.background)
        if background_path.is_file():
            canvas = Image.open(background_path).convert("RGB").resize(self.size, Image.LANCZOS)
        else:
            canvas = Image.new("RGB", self.size, parse_color(self.style.background))
        text = determine_text_color(canvas, self.style.text_color)
        base = tuple(int(v) for v in ImageStat.Stat(canvas).mean[:3])
        palette: Dict[str, object] = {
            "background": base,
            "text": text,
            "heading": text,
            "math": text,
            "muted": _blend(text, base, 0.4),
            "code": text,
            "code_bg": _blend(base, text, 0.07),
            "quote": _blend(base, text, 0.25),
            "grid": _blend(base, text, 0.2),
            "item": _blend(base, (255, 255, 255), 0.6),
            "accent": ROLE_ACCENTS[Role.ASSISTANT],
        }
        return canvas, palette

    def _footer(self, draw: ImageDraw.ImageDraw, palette: Dict[str, object], is_last: bool) -> None:
        font = self.typo.variant(SMALL_FACTOR)
        width, height = self.size
        margin = self.typo.px(CARD_MARGIN)
        line_height = self.typo.line_height(font)
        y = height - margin - line_height
        left = f"{self.style.series_tag} Vol.{self.cover.volume}"
        draw.text((margin, y), left, font=font, fill=palette["muted"])
        signature = self.cover.signature
        sig_width = draw.textlength(signature, font=font)
        draw.text((width - margin - sig_width, y), signature, font=font, fill=palette["muted"])
        if is_last:
            mark_width = draw.textlength(self.style.end_mark, font=font)
            draw.text(((width - mark_width) / 2, y), self.style.end_mark, font=font, fill=palette["muted"])

    def _role_header(
        self,
        draw: ImageDraw.ImageDraw,
        palette: Dict[str, object],
        role: Role,
        origin: Tuple[int, int],
        right: int,
        indicator: str = "",
        continuation: bool = False,
    ) -> None:
        x, y = origin
        header = self.typo.px(self.config.role_header)
        accent = ROLE_ACCENTS[role]
        dot = self.typo.px(14)
        cy = y + header // 2
        draw.ellipse((x, cy - dot, x + dot * 2, cy + dot), fill=accent)
        name_font = self.typo.variant(NAME_FACTOR)
        name_y = cy - self.typo.line_height(name_font) // 2
        draw.text((x + dot * 3, name_y), self.style.role_name(role), font=name_font, fill=accent)
        small = self.typo.variant(SMALL_FACTOR)
        small_y = cy - self.typo.line_height(small) // 2
        labels: List[str] = []
        if continuation:
            labels.append(self.style.continuation_hint)
        if indicator:
            labels.append(indicator)
        if labels:
            label = "  ".join(labels)
            label_width = draw.textlength(label, font=small)
            draw.text((right - label_width, small_y), label, font=small, fill=palette["muted"])

    def _item(
        self,
        draw: ImageDraw.ImageDraw,
        palette: Dict[str, object],
        role: Role,
        text: str,
        top: int,
        indicator: str = "",
        continuation: bool = False,
    ) -> int:
        """Draw one role item and return its bottom edge."""
        width = self.size[0]
        margin = self.typo.px(CARD_MARGIN)
        pad_x = self.typo.px(ITEM_PADDING_X)
        pad_y = self.typo.px(self.config.item_padding) // 2
        header = self.typo.px(self.config.role_header)
        layout = self.oracle.layout(text)
        bottom = top + pad_y * 2 + header + layout.height
        draw.rounded_rectangle(
            (margin, top, width - margin, bottom),
            radius=self.typo.px(ITEM_RADIUS),
            fill=palette["item"],
        )
        self._role_header(
            draw,
            palette,
            role,
            (margin + pad_x, top + pad_y),
            width - margin - pad_x,
            indicator=indicator,
            continuation=continuation,
        )
        item_palette = dict(palette)
        item_palette["accent"] = ROLE_ACCENTS[role]
        layout.draw(draw, (margin + pad_x, top + pad_y + header), item_palette)
        return bottom

    def render_content(self, card: ContentCard) -> Image.Image:
        canvas, palette = self._canvas()
        draw = ImageDraw.Draw(canvas)
        indicator = f"{card.page_index}/{card.total_pages}" if card.total_pages > 1 else ""
        self._item(
            draw,
            palette,
            card.role,
            card.text,
            self.typo.px(CARD_MARGIN),
            indicator=indicator,
            continuation=card.is_continuation,
        )
        self._footer(draw, palette, card.is_last)
        return canvas

    def render_dialogue(self, card: DialogueCard) -> Image.Image:
        canvas, palette = self._canvas()
        draw = ImageDraw.Draw(canvas)
        top = self.typo.px(CARD_MARGIN)
        gap = self.typo.px(self.config.turn_gap)
        for entry in card.entries:
            top = self._item(draw, palette, entry.role, entry.text, top) + gap
        self._footer(draw, palette, card.is_last)
        return canvas

    def render_cover(self) -> Image.Image:
        canvas, palette = self._canvas()
        draw = ImageDraw.Draw(canvas)
        width, height = self.size
        margin = self.typo.px(CARD_MARGIN) * 2
        inner = width - margin * 2
        pad = self.typo.px(ITEM_PADDING_X) * 2

        badge_font = self.typo.variant(NAME_FACTOR)
        badge = f"{self.style.series_tag} Vol.{self.cover.volume}"
        if self.cover.topic:
            badge = f"{badge} · {self.cover.topic}"
        draw.text((margin, margin), badge, font=badge_font, fill=ROLE_ACCENTS[Role.ASSISTANT])

        title_font = self.typo.variant(TITLE_FACTOR)
        title_lines = wrap_lines(draw, self.cover.title, title_font, inner - pad * 2)
        sub_font = self.typo.font
        sub_lines: List[str] = []
        if self.cover.subtitle:
            sub_lines = wrap_lines(draw, f"── {self.cover.subtitle} ──", sub_font, inner - pad * 2)
        block_height = self.typo.line_height(title_font) * len(title_lines)
        if sub_lines:
            block_height += self.typo.px(30) + self.typo.line_height(sub_font) * len(sub_lines)
        y = (height - block_height) // 2 - self.typo.px(80)
        draw.rounded_rectangle(
            (margin, y - pad, width - margin, y + block_height + pad),
            radius=self.typo.px(ITEM_RADIUS),
            fill=palette["item"],
            outline=palette["grid"],
            width=max(1, self.typo.px(2)),
        )
        for line in title_lines:
            draw.text((margin + pad, y), line, font=title_font, fill=palette["heading"])
            y += self.typo.line_height(title_font)
        if sub_lines:
            y += self.typo.px(30)
            for line in sub_lines:
                draw.text((margin + pad, y), line, font=sub_font, fill=palette["muted"])
                y += self.typo.line_height(sub_font)

        participants = f"{self.style.assistant_name} × {self.style.user_name}"
        name_font = self.typo.variant(NAME_FACTOR)
        p_width = draw.textlength(participants, font=name_font)
        p_y = height - margin - self.typo.px(200)
        draw.text(((width - p_width) / 2, p_y), participants, font=name_font, fill=palette["text"])

        small = self.typo.variant(SMALL_FACTOR)
        sig_width = draw.textlength(self.cover.signature, font=small)
        draw.text(
            ((width - sig_width) / 2, height - margin - self.typo.line_height(small)),
            self.cover.signature,
            font=small,
            fill=palette["muted"],
        )
        return canvas

    def render(self, card: Card) -> Image.Image:
        if isinstance(card, CoverCard):
            image = self.render_cover()
        elif isinstance(card, DialogueCard):
            image = self.render_dialogue(card)
        elif isinstance(card, ContentCard):
            image = self.render_content(card)
        else:
            raise TypeError(f"Unknown card type: {type(card).__name__}")
        if self.debug:
            print(f"[DEBUG] Rendered {card.kind} card at {image.width}x{image.height}")
        return image
