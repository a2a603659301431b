from PIL import Image, ImageDraw

from chatcards.layout import LayoutOracle, layout_markdown, wrap_lines
from chatcards.markup import MarkdownRenderer
from chatcards.models import ContentCard, CoverCard, DialogueCard, DialogueEntry, PageFragment
from chatcards.pagination import PaginationConfig, paginate
from chatcards.parser import Role, Turn
from chatcards.render import CardRenderer, CardStyle, CoverOptions, parse_color


def scratch():
    return ImageDraw.Draw(Image.new("RGB", (1, 1)))


def test_wrap_keeps_latin_words_whole(typography):
    draw = scratch()
    lines = wrap_lines(draw, "word " * 50, typography.font, 200)
    assert len(lines) > 1
    assert " ".join(lines).split() == ["word"] * 50
    for line in lines:
        assert draw.textlength(line, font=typography.font) <= 200


def test_wrap_breaks_cjk_anywhere(typography):
    draw = scratch()
    text = "汉" * 100
    lines = wrap_lines(draw, text, typography.font, 200)
    assert "".join(lines) == text
    for line in lines:
        assert draw.textlength(line, font=typography.font) <= 200


def test_wrap_keeps_blank_lines(typography):
    assert wrap_lines(scratch(), "a\n\nb", typography.font, 500) == ["a", "", "b"]


def test_layout_of_mixed_markdown(typography):
    fragment = "\n".join(
        [
            "# Heading",
            "",
            "Some **bold** text with $x^2$.",
            "",
            "- one",
            "- two",
            "",
            "> quoted",
            "",
            "```",
            "code()",
            "```",
            "",
            "| a | b |",
            "|---|---|",
            "| 1 | 2 |",
        ]
    )
    layout = layout_markdown(fragment, typography, 600, MarkdownRenderer())
    texts = [run.text for run in layout.runs]
    assert layout.height > 0
    assert "Heading" in texts
    assert "•" in texts
    assert "code()" in texts
    assert any("x^2" in text for text in texts)
    assert layout.rules


def test_oracle_height_grows_with_content(typography):
    oracle = LayoutOracle(typography)
    short = oracle("one line")
    longer = oracle("one line\n\n" + "more text " * 100)
    assert 0 < short < longer
    assert oracle("") == 0
    assert oracle("one line", extra_height=40) == short + 40


def test_oracle_memoizes(typography):
    oracle = LayoutOracle(typography)
    oracle("same text")
    oracle("same text", extra_height=10)
    assert oracle.calls == 1


def test_real_layout_pages_fit_budget(typography):
    oracle = LayoutOracle(typography)
    config = PaginationConfig(budget=600)
    text = "\n\n".join(
        [
            "The first paragraph explains the idea in a few sentences. " * 4,
            "- a list item\n- another list item\n- a third one",
            "```\n" + "\n".join(f"line_{i} = {i}" for i in range(40)) + "\n```",
            "A closing paragraph. " * 30,
        ]
    )
    turns = [Turn(Role.USER, "Explain it?"), Turn(Role.ASSISTANT, text)]
    result = paginate(turns, oracle, config)
    assert len(result) > 1
    for card in result:
        if isinstance(card, DialogueCard):
            heights = [oracle(entry.text, config.chrome) for entry in card.entries]
            assert sum(heights) + config.turn_gap * (len(heights) - 1) <= config.budget
        else:
            assert oracle(card.text, config.chrome) <= config.budget


def test_renderer_draws_every_card_kind(typography):
    renderer = CardRenderer(
        LayoutOracle(typography),
        style=CardStyle(background="night"),
        cover=CoverOptions(title="Tides", subtitle="and the Moon", topic="science"),
    )
    cards = [
        CoverCard(),
        ContentCard(PageFragment(Role.USER, "Why?", page_index=2, total_pages=3)),
        DialogueCard([DialogueEntry(Role.USER, "Hi"), DialogueEntry(Role.ASSISTANT, "Hello **there**")], is_last=True),
    ]
    for card in cards:
        image = renderer.render(card)
        assert image.size == (1080, 1800)
        assert image.getpixel((5, 5)) == parse_color("night")


def run_texts(fragment, typography, renderer=None):
    layout = layout_markdown(fragment, typography, 900, renderer or MarkdownRenderer())
    return [run.text for run in layout.runs]


def test_dollar_signs_in_code_survive_layout(typography):
    assert run_texts("```bash\necho $HOME and $PATH\n```", typography) == ["echo $HOME and $PATH"]


def test_prices_in_prose_survive_layout(typography):
    assert run_texts("It costs $5 and $10 today.", typography) == ["It costs $5 and $10 today."]


def test_inline_formula_keeps_its_delimiters(typography):
    assert run_texts("Area is $\\pi r^2$ here", typography) == ["Area is $\\pi r^2$ here"]


def test_empty_list_item_leaves_no_stray_marker(typography):
    layout = layout_markdown("- \n\nnext paragraph", typography, 600, MarkdownRenderer())
    texts = [run.text for run in layout.runs]
    assert "•" not in texts
    assert "next paragraph" in texts
    assert all(run.x >= 0 for run in layout.runs)


class FailingParser:
    def parse(self, text):
        raise RuntimeError("parser broke")


def test_layout_falls_back_to_plain_text(typography):
    renderer = MarkdownRenderer(parser=FailingParser())
    assert run_texts("**bold** stays\n\nsecond", typography, renderer) == ["**bold** stays", "second"]
