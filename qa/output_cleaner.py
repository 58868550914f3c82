"""
Output Cleaner for model answer text.

Strips HTML and Markdown artifacts from the answer while keeping the
[#id] citation markers the prompt asks the model to use.
"""

import re

CITATION_MARKER = re.compile(r"\[#([^\]\s]+)\]")


def clean_output(text: str) -> str:
    """
    Clean model answer text.

    Removes:
    - HTML tags and entities
    - Markdown bold, italic, inline code and code blocks
    - Markdown headers, bullet and numbered list markers
    - Markdown links and images (their text is kept)
    - Excess newlines and spaces

    Args:
        text: Raw answer text.

    Returns:
        Cleaned text with citation markers intact.
    """
    if not text or not isinstance(text, str):
        return text or ""

    # Protect citation markers from the link rule below
    markers = []

    def _stash(match):
        markers.append(match.group(0))
        return f"\x00{len(markers) - 1}\x00"

    result = CITATION_MARKER.sub(_stash, text)

    result = remove_thinking_tags(result)

    # Remove HTML tags
    result = re.sub(r"<[^>]*>", "", result)

    # Remove HTML entities
    result = re.sub(r"&[a-zA-Z0-9#]+;", " ", result)

    # Remove markdown code blocks before inline code
    result = re.sub(r"```[^`]*```", "", result, flags=re.DOTALL)

    # Remove markdown bold (**text** or __text__)
    result = re.sub(r"\*\*([^*]+)\*\*", r"\1", result)
    result = re.sub(r"__([^_]+)__", r"\1", result)

    # Remove markdown italic
    result = re.sub(r"(?<!\w)\*([^*]+)\*(?!\w)", r"\1", result)

    # Remove backticks (inline code)
    result = re.sub(r"`([^`]*)`", r"\1", result)

    # Remove markdown headers (# ## ### etc.)
    result = re.sub(r"^#{1,6}\s+", "", result, flags=re.MULTILINE)

    # Remove bullet point markers at start of lines
    result = re.sub(r"^\s*[-•*+]\s+", "", result, flags=re.MULTILINE)

    # Remove numbered list markers at start of lines
    result = re.sub(r"^\s*\d+\.\s+", "", result, flags=re.MULTILINE)

    # Remove markdown images, then links, keeping the text
    result = re.sub(r"!\[([^\]]*)\]\([^)]+\)", r"\1", result)
    result = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", result)

    # Collapse multiple newlines to max 2
    result = re.sub(r"\n{3,}", "\n\n", result)

    # Collapse multiple spaces to single space
    result = re.sub(r" {2,}", " ", result)

    result = re.sub(r"\x00(\d+)\x00", lambda m: markers[int(m.group(1))], result)

    return result.strip()


def remove_thinking_tags(text: str) -> str:
    """
    Remove thinking/reasoning blocks that some models emit.

    Args:
        text: Model output text.

    Returns:
        Text with those blocks removed.
    """
    if not text:
        return ""

    result = re.sub(r"<thinking>.*?</thinking>", "", text, flags=re.DOTALL | re.IGNORECASE)
    result = re.sub(r"<think>.*?</think>", "", result, flags=re.DOTALL | re.IGNORECASE)
    result = re.sub(r"<reasoning>.*?</reasoning>", "", result, flags=re.DOTALL | re.IGNORECASE)

    return result.strip()


def cited_ids(text: str) -> list[str]:
    """Ids referenced as [#id] in text, in order of appearance."""
    if not text:
        return []
    return CITATION_MARKER.findall(text)
