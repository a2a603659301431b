import pytest
from PIL import Image

from chatcards.exporter import (
    build_target_directory,
    card_filename,
    export_cards,
    page_letters,
)
from chatcards.models import ContentCard, CoverCard, DialogueCard, DialogueEntry, PageFragment
from chatcards.parser import Role


@pytest.mark.parametrize(
    "index, letters",
    [(1, "a"), (2, "b"), (26, "z"), (27, "aa"), (28, "ab")],
)
def test_page_letters(index, letters):
    assert page_letters(index) == letters


def test_card_filenames():
    assert card_filename("1", 0, CoverCard()) == "Vol1_00_cover.png"
    user = ContentCard(PageFragment(Role.USER, "hi"))
    assert card_filename("1", 1, user) == "Vol1_01_user.png"
    page = ContentCard(PageFragment(Role.ASSISTANT, "x", page_index=2, total_pages=3))
    assert card_filename("3", 12, page) == "Vol3_12_geminib.png"
    dialogue = DialogueCard([DialogueEntry(Role.USER, "a"), DialogueEntry(Role.ASSISTANT, "b")])
    assert card_filename("1", 4, dialogue) == "Vol1_04_dialogue.png"


def test_custom_role_tags():
    card = ContentCard(PageFragment(Role.ASSISTANT, "x"))
    assert card_filename("1", 2, card, {Role.ASSISTANT: "claude"}) == "Vol1_02_claude.png"


def test_build_target_directory_avoids_existing(tmp_path):
    (tmp_path / "chat").mkdir()
    (tmp_path / "chat_1").mkdir()
    assert build_target_directory(tmp_path, "chat") == tmp_path / "chat_2"
    assert build_target_directory(tmp_path, "") == tmp_path / "cards"


def test_export_continues_after_a_failed_card(tmp_path):
    cards = [
        CoverCard(),
        ContentCard(PageFragment(Role.USER, "boom")),
        ContentCard(PageFragment(Role.ASSISTANT, "fine")),
    ]
    rendered = []

    def render(card):
        rendered.append(card)
        if getattr(card, "text", "") == "boom":
            raise RuntimeError("render failed")
        return Image.new("RGB", (4, 4))

    report = export_cards(cards, render, tmp_path / "out", delay=0)
    assert rendered == cards
    assert report.total == 3
    assert report.exported == 2
    assert not report.ok
    assert report.failures[0].index == 1
    assert report.failures[0].filename == "Vol1_01_user.png"
    assert "render failed" in report.failures[0].error
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == [
        "Vol1_00_cover.png",
        "Vol1_02_gemini.png",
    ]
    assert report.summary() == "exported 2 of 3"


def test_export_single_card_keeps_its_position_name(tmp_path):
    cards = [CoverCard(), ContentCard(PageFragment(Role.USER, "a")), ContentCard(PageFragment(Role.ASSISTANT, "b"))]
    report = export_cards(cards, lambda card: Image.new("RGB", (2, 2)), tmp_path, delay=0, only=2)
    assert report.total == 1
    assert [p.name for p in report.written] == ["Vol1_02_gemini.png"]
    with pytest.raises(ValueError):
        export_cards(cards, lambda card: Image.new("RGB", (2, 2)), tmp_path / "none", only=3)
    assert not (tmp_path / "none").exists()
