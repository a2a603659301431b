import pytest
from chatcards.parser import (
    LineKind,
    Role,
    classify_line,
    parse_conversation,
    preview_text,
    suggest_cover_title,
)


def user_table(*rows):
    lines = ["| User Prompt: |", "|-------------|"]
    lines.extend(f"| {row} |" for row in rows)
    return "\n".join(lines)


def test_alternating_turns():
    md = "\n\n".join(
        [
            user_table("What is AI?"),
            "AI is a branch of computer science.",
            user_table("Give an example."),
            "Speech assistants.\n\nSelf-driving cars.",
        ]
    )
    turns = parse_conversation(md)
    assert [t.role for t in turns] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert turns[0].text == "What is AI?"
    assert turns[1].text == "AI is a branch of computer science."
    assert turns[3].text == "Speech assistants.\n\nSelf-driving cars."


def test_blank_line_padding_does_not_change_text():
    md = "\n\n\n" + user_table("Q") + "\n\n\n\nAnswer line\n\n\n"
    turns = parse_conversation(md)
    assert [(t.role, t.text) for t in turns] == [(Role.USER, "Q"), (Role.ASSISTANT, "Answer line")]


def test_assistant_starts_on_first_non_table_line():
    md = user_table("Q") + "\nImmediate answer\nsecond line"
    turns = parse_conversation(md)
    assert turns[1].text == "Immediate answer\nsecond line"


def test_multi_row_user_cells_join_with_newlines():
    md = user_table("first row", "", "second row") + "\n\nreply"
    turns = parse_conversation(md)
    assert turns[0].text == "first row\nsecond row"


def test_header_matching_is_case_insensitive_and_flexible():
    md = "|  user   PROMPT :  |\n| --- |\n| hi |\n\nhello"
    turns = parse_conversation(md)
    assert [t.text for t in turns] == ["hi", "hello"]


def test_no_header_yields_no_turns():
    assert parse_conversation("# Just notes\n\nNothing else here.") == []
    assert parse_conversation("") == []


def test_consecutive_headers():
    md = user_table("one") + "\n" + user_table("two") + "\n\nanswer"
    turns = parse_conversation(md)
    assert [(t.role, t.text) for t in turns] == [
        (Role.USER, "one"),
        (Role.USER, "two"),
        (Role.ASSISTANT, "answer"),
    ]


def test_user_count_matches_headers_and_trailing_table_has_no_reply():
    md = "\n\n".join([user_table("a"), "reply a", user_table("b"), "reply b", user_table("c")])
    turns = parse_conversation(md)
    users = [t for t in turns if t.role is Role.USER]
    assistants = [t for t in turns if t.role is Role.ASSISTANT]
    assert len(users) == 3
    assert len(assistants) == 2
    assert turns[-1].text == "c"


def test_tables_inside_assistant_text_are_kept():
    reply = "| col | val |\n|---|---|\n| a | 1 |"
    md = user_table("show a table") + "\n\n" + reply
    turns = parse_conversation(md)
    assert turns[1].text == reply


def test_preamble_is_dropped_by_default():
    md = "Intro before anything.\n\n" + user_table("Q") + "\n\nA"
    turns = parse_conversation(md)
    assert [t.text for t in turns] == ["Q", "A"]


def test_preamble_can_be_kept_as_assistant_turn():
    md = "Intro before anything.\n\n" + user_table("Q") + "\n\nA"
    turns = parse_conversation(md, keep_preamble=True)
    assert [(t.role, t.text) for t in turns] == [
        (Role.ASSISTANT, "Intro before anything."),
        (Role.USER, "Q"),
        (Role.ASSISTANT, "A"),
    ]


def test_empty_user_table_is_dropped():
    md = user_table("") + "\n\nonly an answer"
    turns = parse_conversation(md)
    assert [(t.role, t.text) for t in turns] == [(Role.ASSISTANT, "only an answer")]


@pytest.mark.parametrize(
    "line, in_table, expected",
    [
        ("| User Prompt: |", False, LineKind.HEADER),
        ("|-------------|", True, LineKind.SEPARATOR),
        ("| - - - |", True, LineKind.SEPARATOR),
        ("| text |", True, LineKind.CELL),
        ("| text |", False, LineKind.OTHER),
        ("plain", True, LineKind.OTHER),
    ],
)
def test_classify_line(line, in_table, expected):
    assert classify_line(line, in_table) is expected


def test_cover_title_and_preview():
    md = user_table("Q") + "\n\n## **LLM** changes everything。More text follows."
    turns = parse_conversation(md)
    assert suggest_cover_title(turns) == "LLM changes everything"
    assert suggest_cover_title(turns[:1]) is None
    assert preview_text(turns[1]) == "LLM changes everything。More text follows."
    assert preview_text(turns[1], length=10).endswith("...")
