"""Locally synthesized reply used when every upstream model has failed."""

from typing import Iterator

DEGRADED_MESSAGE = (
    "I'm having some technical difficulties right now, but I'm still here for you. "
    "Please give me a moment and try again shortly.\n\n"
    "While I sort this out, take a deep breath. Whatever you're going through, "
    "this moment will pass.\n\n"
    "If you're in crisis or need immediate help, please reach out to:\n"
    "UK: Samaritans - 116 123 (free, 24/7)\n"
    "Or your local emergency services\n\n"
    "I'll be back to full capacity soon."
)


def iter_degraded_words(message: str = DEGRADED_MESSAGE) -> Iterator[str]:
    """Split on single spaces; joining the pieces restores the message."""
    for index, word in enumerate(message.split(" ")):
        yield word if index == 0 else f" {word}"
