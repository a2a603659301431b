import math

import pytest

from chatcards.layout import LayoutUnavailableError
from chatcards.models import ContentCard, CoverCard, DialogueCard
from chatcards.pagination import PaginationConfig, Paginator, paginate
from chatcards.parser import Role, Turn
from conftest import char_measure


def user(text):
    return Turn(Role.USER, text)


def assistant(text):
    return Turn(Role.ASSISTANT, text)


def card_height(card, measure, config):
    if isinstance(card, DialogueCard):
        heights = [measure(entry.text, config.chrome) for entry in card.entries]
        return sum(heights) + config.turn_gap * (len(heights) - 1)
    return measure(card.text, config.chrome)


def test_short_turns_merge_into_one_dialogue(measure, small_config):
    turns = [user("a" * 100), assistant("b" * 100), user("c" * 100)]
    result = paginate(turns, measure, small_config)
    assert len(result) == 1
    card = result[0]
    assert isinstance(card, DialogueCard)
    assert [entry.text for entry in card.entries] == [t.text for t in turns]
    assert card.is_last
    assert not result.degraded


def test_single_short_turn_is_content_card(measure, small_config):
    result = paginate([assistant("hello")], measure, small_config)
    assert len(result) == 1
    assert isinstance(result[0], ContentCard)
    assert result[0].total_pages == 1


def test_oversized_turn_splits_into_flagged_pages(measure, small_config):
    text = "x" * 2000
    result = paginate([assistant(text)], measure, small_config)
    assert len(result) == 4
    assert all(isinstance(card, ContentCard) for card in result)
    assert [card.page_index for card in result] == [1, 2, 3, 4]
    assert {card.total_pages for card in result} == {4}
    assert result[0].fragment.is_first_of_turn
    assert not any(card.fragment.is_first_of_turn for card in result.cards[1:])
    assert "".join(card.text for card in result) == text


def test_sentence_split_never_breaks_inside_a_sentence(measure, small_config):
    sentence = "a" * 49 + "."
    text = sentence * 40
    result = paginate([assistant(text)], measure, small_config)
    assert len(result) == 4
    for card in result:
        assert card.text.endswith(".")
        assert len(card.text) % len(sentence) == 0
    assert "".join(card.text for card in result) == text


def test_block_split_keeps_paragraphs_whole(measure, small_config):
    paragraphs = ["a" * 300, "b" * 300, "c" * 300]
    text = "\n\n".join(paragraphs)
    result = paginate([assistant(text)], measure, small_config)
    assert [card.text for card in result] == paragraphs
    assert "\n\n".join(card.text for card in result) == text


def test_oversized_turn_flushes_pending_neighbours(measure, small_config):
    turns = [user("q" * 100), assistant("x" * 2000), user("r" * 100)]
    result = paginate(turns, measure, small_config)
    assert len(result) == 6
    assert result[0].text == "q" * 100
    assert result[0].total_pages == 1
    assert [card.page_index for card in result.cards[1:5]] == [1, 2, 3, 4]
    assert result[5].text == "r" * 100


def test_every_card_fits_the_budget(small_config):
    measure = char_measure()
    turns = [
        user("short question?"),
        assistant("Sentence one. " * 80),
        user("q" * 250),
        assistant("\n\n".join(["para " * 30] * 6)),
        user("ok"),
        assistant("y" * 1200),
    ]
    result = paginate(turns, measure, small_config)
    for card in result:
        assert card_height(card, measure, small_config) <= small_config.budget


def test_turn_text_is_conserved(measure, small_config):
    turns = [user("hello"), assistant("z" * 1500), user("bye")]
    result = paginate(turns, measure, small_config)
    rebuilt = []
    for card in result:
        if isinstance(card, DialogueCard):
            rebuilt.extend(entry.text for entry in card.entries)
        elif card.page_index == 1:
            rebuilt.append(card.text)
        else:
            rebuilt[-1] += card.text
    assert rebuilt == [t.text for t in turns]


def test_only_final_card_is_last(measure, small_config):
    turns = [user("q" * 500), assistant("a" * 500), user("r" * 500)]
    result = paginate(turns, measure, small_config, cover=True)
    assert isinstance(result[0], CoverCard)
    assert [card.is_last for card in result] == [False, False, False, True]


def test_cover_only_prepended_once(measure, small_config):
    result = paginate([user("a"), assistant("b")], measure, small_config, cover=True)
    assert isinstance(result[0], CoverCard)
    assert sum(isinstance(card, CoverCard) for card in result) == 1


def test_empty_turn_list(measure, small_config):
    assert len(paginate([], measure, small_config)) == 0


def test_degraded_without_measure(small_config):
    turns = [user("a"), assistant("x" * 5000), user("b")]
    result = paginate(turns, None, small_config)
    assert result.degraded
    assert [card.text for card in result] == [t.text for t in turns]
    assert all(isinstance(card, ContentCard) for card in result)
    assert result[-1].is_last


def test_degraded_when_layout_is_unavailable(small_config):
    def broken(fragment, extra_height=0):
        raise LayoutUnavailableError("fonts not ready")

    result = paginate([user("a"), assistant("b")], broken, small_config, cover=True)
    assert result.degraded
    assert isinstance(result[0], CoverCard)
    assert len(result) == 3


def test_split_text_levels_can_be_skipped(measure):
    paginator = Paginator(measure, PaginationConfig(budget=120, role_header=0, item_padding=0))
    assert paginator.split_text("abc. def.", levels=()) == ["abc. def."]
    pieces = paginator.split_text("w" * 250, levels=())
    assert pieces == ["w" * 120, "w" * 120, "w" * 10]


@pytest.mark.parametrize("gap", [0, 16, 40])
def test_turn_gap_counts_between_merged_turns(measure, gap):
    config = PaginationConfig(budget=660, role_header=52, item_padding=56, turn_gap=gap)
    turns = [user("a" * 210), assistant("b" * 210)]
    result = paginate(turns, measure, config)
    fits_together = 2 * (210 + config.chrome) + gap <= config.budget
    assert (len(result) == 1) is fits_together


def test_cover_with_two_fitting_turns(measure, small_config):
    result = paginate([user("a" * 100), assistant("b" * 100)], measure, small_config, cover=True)
    assert len(result) == 2
    assert isinstance(result[0], CoverCard)
    assert isinstance(result[1], DialogueCard)
    assert result[1].is_last
    assert not result[0].is_last


@pytest.mark.parametrize(
    "text",
    [
        "x" * 553,
        "x" * 1104,
        "x" * 5000,
        ("Short one. " + "A much longer sentence that goes on. ") * 30,
        "\n\n".join(["p" * 200] * 10),
        "\n\n".join(["q" * 700, "r" * 100, "s" * 100]),
    ],
)
def test_page_count_stays_near_the_minimum(measure, small_config, text):
    capacity = small_config.budget - small_config.chrome
    minimum = math.ceil(measure(text) / capacity)
    result = paginate([assistant(text)], measure, small_config)
    assert minimum <= len(result) <= minimum + 2
