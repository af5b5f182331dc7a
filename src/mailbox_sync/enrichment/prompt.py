"""LLM prompt contract for message enrichment."""

from __future__ import annotations

from mailbox_sync.models import Category, Message

MAX_CONTENT_CHARS = 6000


def _render_categories(categories: list[Category]) -> str:
    lines = []
    for c in categories:
        line = f"- {c.name} ({c.label})"
        if c.description.strip():
            line += f": {c.description.strip()}"
        lines.append(line)
    return "\n".join(lines)


def build_enrichment_prompt(message: Message, categories: list[Category]) -> str:
    """Build the enrichment prompt for one message.

    Response contract:
        - a single JSON object (no prose)
        - keys: summary, category, priority, sentiment, actionItems
        - category is exactly one of the internal category names
    """

    content = (message.content or message.preview or "").strip()
    if len(content) > MAX_CONTENT_CHARS:
        content = content[:MAX_CONTENT_CHARS] + "\n[truncated]"

    names = ", ".join(c.name for c in categories)

    return (
        "Analyze this email and provide insights.\n\n"
        "Email details:\n"
        f"Subject: {message.subject}\n"
        f"From: {message.sender}\n"
        f"To: {message.to}\n"
        f"Content: {content if content else '(empty)'}\n\n"
        "Available categories (choose the most appropriate one):\n"
        f"{_render_categories(categories)}\n\n"
        "Provide:\n"
        "1. A brief summary (2-3 sentences)\n"
        f"2. The category (must be exactly one of: {names})\n"
        "3. Priority level (urgent, high, medium, low)\n"
        "4. Sentiment (positive, negative, neutral)\n"
        "5. Key action items or next steps (if any)\n\n"
        "Categorization rules:\n"
        "- Use the exact internal category name, not the display label.\n"
        "- Check the sender first; a category whose description names the sender wins.\n"
        "- If nothing matches clearly, choose the closest category by description.\n\n"
        "Respond ONLY with a JSON object of this shape:\n"
        '{"summary": "string", "category": "string", "priority": "string", '
        '"sentiment": "string", "actionItems": ["string"]}\n'
    )
