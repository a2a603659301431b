from __future__ import annotations

from html import escape
from pathlib import Path
from typing import List, Optional, Sequence

from PIL import Image

from chatcards.markup import MarkdownRenderer
from chatcards.models import Card, ContentCard, CoverCard, DialogueCard
from chatcards.parser import Role
from chatcards.render import (
    ROLE_ACCENTS,
    CardStyle,
    CoverOptions,
    determine_text_color,
    parse_color,
)

MATHJAX_URL = "https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<script>
window.MathJax = {{
  tex: {{inlineMath: [["$", "$"]], displayMath: [["$$", "$$"]]}}
}};
</script>
<script async src="{mathjax}"></script>
<style>
body {{
  margin: 0;
  padding: 24px;
  background: #ddd;
  font-family: "LXGW WenKai", "Noto Sans CJK SC", sans-serif;
}}
.card {{
  width: 1080px;
  min-height: 1800px;
  box-sizing: border-box;
  margin: 0 auto 24px;
  padding: 48px;
  background: {background};
  color: {text};
}}
.item {{
  border-radius: 18px;
  padding: 28px;
  margin-bottom: 24px;
  background: rgba(255, 255, 255, 0.6);
}}
.role {{ font-weight: 600; }}
.role-user {{ color: {user_accent}; }}
.role-assistant {{ color: {assistant_accent}; }}
.indicator {{ float: right; opacity: 0.6; }}
.math-display {{ text-align: center; }}
.cover h1 {{ font-size: 54px; }}
.footer {{ opacity: 0.6; font-size: 20px; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


def _hex(color: tuple) -> str:
    return "#{:02x}{:02x}{:02x}".format(*color)


def _item(
    renderer: MarkdownRenderer,
    style: CardStyle,
    role: Role,
    text: str,
    indicator: str = "",
) -> str:
    parts = [f'<div class="item item-{role.value}">']
    parts.append(f'<div class="role role-{role.value}">{escape(style.role_name(role))}')
    if indicator:
        parts.append(f'<span class="indicator">{escape(indicator)}</span>')
    parts.append("</div>")
    parts.append(renderer.render(text))
    parts.append("</div>")
    return "\n".join(parts)


def _cover(style: CardStyle, cover: CoverOptions) -> str:
    badge = f"{style.series_tag} Vol.{cover.volume}"
    if cover.topic:
        badge = f"{badge} · {cover.topic}"
    parts = ['<section class="card cover">', f"<p>{escape(badge)}</p>"]
    parts.append(f"<h1>{escape(cover.title)}</h1>")
    if cover.subtitle:
        parts.append(f"<p>── {escape(cover.subtitle)} ──</p>")
    parts.append(
        f"<p>{escape(style.assistant_name)} × {escape(style.user_name)}</p>"
        f'<p class="footer">{escape(cover.signature)}</p>'
    )
    parts.append("</section>")
    return "\n".join(parts)


def render_cards_html(
    cards: Sequence[Card],
    style: Optional[CardStyle] = None,
    cover: Optional[CoverOptions] = None,
    renderer: Optional[MarkdownRenderer] = None,
) -> str:
    """One ``<section>`` per card; formulas are left for MathJax to typeset."""
    style = style or CardStyle()
    cover = cover or CoverOptions()
    renderer = renderer or MarkdownRenderer()

    sections: List[str] = []
    for card in cards:
        if isinstance(card, CoverCard):
            sections.append(_cover(style, cover))
            continue
        parts = [f'<section class="card {card.kind}">']
        if isinstance(card, DialogueCard):
            parts.extend(_item(renderer, style, e.role, e.text) for e in card.entries)
        elif isinstance(card, ContentCard):
            indicator = f"{card.page_index}/{card.total_pages}" if card.total_pages > 1 else ""
            if card.is_continuation:
                indicator = f"{style.continuation_hint} {indicator}"
            parts.append(_item(renderer, style, card.role, card.text, indicator))
        footer = f"{style.series_tag} Vol.{cover.volume} · {cover.signature}"
        if card.is_last:
            footer = f"{footer} · {style.end_mark}"
        parts.append(f'<p class="footer">{escape(footer)}</p>')
        parts.append("</section>")
        sections.append("\n".join(parts))

    # Image backgrounds only apply to the PNG cards.
    background = style.background if not Path(style.background).is_file() else "paper"
    background_rgb = parse_color(background)
    text_rgb = determine_text_color(Image.new("RGB", (1, 1), background_rgb), style.text_color)
    return HTML_TEMPLATE.format(
        title=escape(cover.title),
        mathjax=MATHJAX_URL,
        background=_hex(background_rgb),
        text=_hex(text_rgb),
        user_accent=ROLE_ACCENTS[Role.USER],
        assistant_accent=ROLE_ACCENTS[Role.ASSISTANT],
        body="\n".join(sections),
    )


def export_cards_html(
    cards: Sequence[Card],
    output_path: Path,
    style: Optional[CardStyle] = None,
    cover: Optional[CoverOptions] = None,
    renderer: Optional[MarkdownRenderer] = None,
    debug: bool = False,
) -> Path:
    if not cards:
        raise ValueError("No cards to write as HTML.")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_cards_html(cards, style, cover, renderer), encoding="utf-8")
    if debug:
        print(f"[DEBUG] Wrote {len(cards)} cards to {output_path}")
    return output_path
