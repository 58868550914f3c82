"""
Prompt Builder for report Q&A.

The system instruction is fixed and never user-influenced. Context chunks are
tagged with their ids so the model can cite them, and the model is told to
answer with a single JSON object matching AnswerPayload.
"""
from __future__ import annotations

from qa.schemas import QA_PROMPT_VERSION

# Configuration constants
MAX_CONTEXT_TOKENS = 3000  # Approximate tokens (chars / 4)
MAX_CONTEXT_CHARS = MAX_CONTEXT_TOKENS * 4  # ~12000 characters
MAX_HISTORY_CHARS = 4000

SYSTEM_INSTRUCTION = """You are a report assistant. Answer the user's question about their personal report using ONLY the report excerpts provided below. Do not invent facts that are not supported by the excerpts. If the excerpts do not contain the answer, say so honestly. Answer in the same language as the question. Refer to the excerpts you rely on as [#id]."""

NO_CONTEXT_NOTE = "No report excerpts matched this question. Answer briefly from general knowledge of the report, say that no specific excerpt was found, and cite 0."

JSON_INSTRUCTION = f"""Respond with a single JSON object and nothing else, in this exact shape:
{{"promptVersion": "{QA_PROMPT_VERSION}", "answer": "<answer text>", "citations": [<ids of the excerpts used>], "followUps": ["<up to 3 short follow-up questions>"]}}
"citations" must contain at least one id. "followUps" may be empty."""

ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


def format_context(chunks) -> str:
    """
    Render retrieved chunks as tagged excerpts.

    Args:
        chunks: ContextChunk-like objects with id, content and section.
    """
    parts = []
    for chunk in chunks:
        section = getattr(chunk, "section", None)
        header = f"[#{chunk.id}]" + (f" ({section})" if section else "")
        parts.append(f"{header}\n{chunk.content}")
    return "\n\n".join(parts)


def format_history(messages) -> str:
    lines = []
    for message in messages:
        label = ROLE_LABELS.get(message.role, message.role)
        lines.append(f"{label}: {message.content}")

    history = "\n".join(lines)
    if len(history) > MAX_HISTORY_CHARS:
        # Keep the most recent part
        history = "..." + history[-MAX_HISTORY_CHARS:]
    return history


def build_prompt(chunks, history, question: str) -> str:
    """
    Build the complete prompt for one question.

    Args:
        chunks: Retrieved context chunks, most similar first.
        history: Trimmed conversation turns, oldest first.
        question: The user's question.

    Returns:
        The prompt string.
    """
    context = truncate_context(format_context(chunks), MAX_CONTEXT_CHARS) if chunks else NO_CONTEXT_NOTE

    sections = [
        SYSTEM_INSTRUCTION,
        f"=== REPORT EXCERPTS ===\n{context}\n=== END OF EXCERPTS ===",
    ]
    if history:
        sections.append(f"=== CONVERSATION SO FAR ===\n{format_history(history)}\n=== END OF CONVERSATION ===")
    sections.append(f"Question: {question}")
    sections.append(JSON_INSTRUCTION)

    return "\n\n".join(sections)


def truncate_context(context: str, max_chars: int) -> str:
    """
    Truncate context to fit within token budget, keeping complete excerpts.

    Args:
        context: The full context string.
        max_chars: Maximum characters allowed.

    Returns:
        Truncated context string.
    """
    if len(context) <= max_chars:
        return context

    # Excerpts are separated by blank lines; excerpt bodies never contain one
    excerpts = context.split("\n\n")

    result = []
    current_length = 0

    for excerpt in excerpts:
        excerpt_length = len(excerpt) + 2  # +2 for "\n\n"
        if current_length + excerpt_length > max_chars:
            break
        result.append(excerpt)
        current_length += excerpt_length

    # If we couldn't fit any complete excerpt, truncate the first one
    if not result and excerpts:
        return excerpts[0][:max_chars] + "..."

    return "\n\n".join(result)
