from __future__ import annotations


def process_text(text_input: str) -> str:
    """Transform submitted text. Currently an uppercase conversion."""
    return text_input.upper()
