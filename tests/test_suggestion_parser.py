from __future__ import annotations

from models import ActivityCard
from suggestion_parser import (
    DEFAULT_ICON,
    FALLBACK_TITLE,
    MAX_CARDS,
    activity_icon,
    clean_text,
    parse,
    parse_activity_headings,
    parse_list_items,
    parse_paragraphs,
    split_paragraphs,
)


def test_activity_headings_with_descriptions() -> None:
    text = (
        "Activity 1: Find Colors\nLook for red and blue things.\n"
        "Activity 2: Count Shapes\nCount the circles."
    )

    assert parse(text) == [
        ActivityCard(title="Find Colors", description="Look for red and blue things."),
        ActivityCard(title="Count Shapes", description="Count the circles."),
    ]


def test_multi_line_description_is_space_joined() -> None:
    text = "Intro line is ignored\nActivity 1: Story Time\nTell a story.\n\nUse the dog as the hero."

    assert parse(text) == [
        ActivityCard(title="Story Time", description="Tell a story. Use the dog as the hero.")
    ]


def test_markdown_and_emoji_are_stripped() -> None:
    text = "## Activity 1: **I Spy** 🎨\n*Play* I spy with the picture! 👀"

    cards = parse(text)

    assert cards == [ActivityCard(title="I Spy", description="Play I spy with the picture!")]


def test_header_between_cards_is_not_description() -> None:
    text = "Activity 1: Find Colors\nLook for red.\n## Bonus Ideas\nActivity 2: Count\nCount circles."

    assert parse(text) == [
        ActivityCard(title="Find Colors", description="Look for red."),
        ActivityCard(title="Count", description="Count circles."),
    ]


def test_clean_text_drops_plain_headers() -> None:
    assert clean_text("# Fun Ideas\nActivity 1: Hop") == "Activity 1: Hop"


def test_clean_text_keeps_words_with_underscores() -> None:
    assert clean_text("snake_case_name stays") == "snake_case_name stays"


def test_numbered_list_fallback() -> None:
    text = "Here are ideas:\n1. Color Hunt\nName every color.\n2. Count Together\nCount the cars."

    assert parse_activity_headings(clean_text(text)) == []
    assert parse(text) == [
        ActivityCard(title="Color Hunt", description="Name every color."),
        ActivityCard(title="Count Together", description="Count the cars."),
    ]


def test_bold_numbered_titles_from_markdown_output() -> None:
    text = "**1. I Spy Game**\nPlay 'I spy'.\n\n**2. Color Hunt**\nFind colors!"

    assert parse(text) == [
        ActivityCard(title="I Spy Game", description="Play 'I spy'."),
        ActivityCard(title="Color Hunt", description="Find colors!"),
    ]


def test_dashed_and_starred_bullets() -> None:
    cards = parse_list_items(clean_text("- Jump\nlike a frog\n* Sing\na song"))

    assert cards == [
        ActivityCard(title="Jump", description="like a frog"),
        ActivityCard(title="Sing", description="a song"),
    ]


def test_paragraph_fallback_uses_first_sentence_as_title() -> None:
    text = "Draw the tree. Use green and brown crayons.\n\nAct it out: Pretend to be the cat."

    assert parse(text) == [
        ActivityCard(title="Draw the tree", description="Use green and brown crayons."),
        ActivityCard(title="Act it out: Pretend to be the cat", description=""),
    ]


def test_paragraph_title_strips_trailing_colon() -> None:
    cards = parse_paragraphs("Look closely:. Then describe it.\n\nListen. Hear the birds.")

    assert cards[0].title == "Look closely"
    assert cards[1] == ActivityCard(title="Listen", description="Hear the birds.")


def test_single_block_is_not_paragraphs() -> None:
    assert split_paragraphs("one block\nstill the same block") == []


def test_degenerate_input_yields_one_fallback_card() -> None:
    text = "just some unstructured rambling text with no structure at all"

    cards = parse(text)

    assert len(cards) == 1
    assert cards[0].title == FALLBACK_TITLE
    assert cards[0].description == text
    assert len(cards[0].description) <= 203


def test_fallback_description_is_truncated_with_ellipsis() -> None:
    text = "word " * 100

    card = parse(text)[0]

    assert card.title == FALLBACK_TITLE
    assert len(card.description) == 203
    assert card.description.endswith("...")


def test_empty_input_still_yields_one_card() -> None:
    assert parse("") == [ActivityCard(title=FALLBACK_TITLE, description="")]


def test_output_is_capped_in_document_order() -> None:
    text = "\n".join(f"Activity {i}: Title {i}\nDo thing {i}." for i in range(1, 10))

    cards = parse(text)

    assert len(cards) == MAX_CARDS
    assert [c.title for c in cards] == [f"Title {i}" for i in range(1, 7)]


def test_heading_tier_wins_over_list_tier() -> None:
    text = "1. Not a card\nActivity 1: Real Card\nDetails."

    assert parse(text) == [ActivityCard(title="Real Card", description="Details.")]


def test_parse_is_deterministic() -> None:
    text = "Activity 1: A\nB\n\nActivity 2: C\nD"
    assert parse(text) == parse(text)


def test_activity_icon_keywords() -> None:
    assert activity_icon("Count the Ducks") == "\U0001F522"
    assert activity_icon("Color Hunt") == "\U0001F3A8"
    assert activity_icon("Something else") == DEFAULT_ICON
