"""Prompt templates for the vision model."""

from __future__ import annotations

from typing import Iterable, Optional

from models import Channel, ConversationTurn, Role, SessionConfig, SessionMode

MAX_SUGGESTIONS = 6

CONVERSATION_STARTERS = {
    Channel.TEXT: [
        "What do you see in this picture?",
        "Can you tell me about the colors in this image?",
        "What's your favorite thing in this picture?",
        "What do you think is happening here?",
        "Can you count the items you see?",
    ],
    Channel.VOICE: [
        "Hi there! Let's talk about this picture together!",
        "What catches your eye first in this image?",
        "I see something interesting here, what do you notice?",
        "Let's explore this picture together - what do you see?",
        "This looks like a fun picture to discuss!",
    ],
}


def opening_prompt(age: int, focus: str) -> str:
    return (
        "Begin a conversation about activities that can be found within this image, "
        f"taking into consideration the child's age: {age} years old, and the focus: {focus}.\n\n"
        "Please start with a warm greeting and ask an engaging question about what they see "
        "in the image. Keep the conversation interactive and educational."
    )


def serialize_history(turns: Iterable[ConversationTurn]) -> str:
    lines = []
    for turn in turns:
        speaker = "Child" if turn.role == Role.USER else "Assistant"
        lines.append(f"{speaker}: {turn.text}")
    return "\n\n".join(lines)


def continuation_prompt(
    age: int,
    focus: str,
    turns: Iterable[ConversationTurn],
    latest: str,
) -> str:
    # The whole history is re-sent on every turn; there is no truncation.
    return (
        "Continue this conversation about the image.\n\n"
        f"Previous conversation:\n{serialize_history(turns)}\n\n"
        f'Child\'s latest response: "{latest}"\n\n'
        f"Child's age: {age} years old\n"
        f"Focus: {focus}\n\n"
        "Please respond naturally and keep the conversation engaging and educational."
    )


def suggestion_prompt(age: int, focus: str, count: int = 4) -> str:
    count = max(1, min(MAX_SUGGESTIONS, count))
    return (
        f"Create {count} engaging activity suggestions based on this image for a "
        f"{age}-year-old child with a focus on {focus}.\n\n"
        "Please format EXACTLY as follows, one activity per block:\n\n"
        "Activity 1: <short title>\n"
        "<one or two sentences describing what to do with the picture>\n\n"
        "Activity 2: <short title>\n"
        "<description>\n\n"
        "Do not use markdown, bullet points or emoji. Make sure each activity is "
        "age-appropriate and aligns with the focus area."
    )


def build_prompt(
    config: SessionConfig,
    turns: Iterable[ConversationTurn],
    user_text: Optional[str],
    suggestion_count: int = 4,
) -> str:
    """Pick the template for the next turn.

    Suggestion mode ignores history. Conversation mode opens with a prompt
    keyed only by age and focus, then continues with the serialized log.
    """
    age = int(config.child_age or 0)
    focus = config.focus_area.value if config.focus_area is not None else ""
    if config.mode == SessionMode.SUGGESTION:
        return suggestion_prompt(age, focus, suggestion_count)
    history = list(turns)
    if not history:
        return opening_prompt(age, focus)
    return continuation_prompt(age, focus, history, user_text or "")
