from __future__ import annotations

from reviewflow.providers.llm.base import DraftRequest


def build_draft_prompt(request: DraftRequest) -> str:
    business = request.business_name or "our business"
    industry = request.industry or "local business"
    style = (
        "Address the customer informally."
        if (request.language_style or "").lower() == "casual"
        else "Address the customer formally."
    )
    lines = [
        f'Role: you handle customer care for "{business}" ({industry}).',
        f"Tone: {request.tone}. {style}",
    ]
    if request.knowledge_base:
        lines.append("Key business facts you may rely on:")
        lines.append(request.knowledge_base.strip())

    lines.append("")
    lines.append("Task: write a reply to this customer review.")
    lines.append(f"Rating: {request.rating}/5")
    lines.append(f"Author: {request.author_name or 'Customer'}")
    lines.append(f'Review: "{request.text}"')
    lines.append("")
    if request.rating >= 4:
        lines.append("Thank the customer warmly and pick up one positive point they mention.")
    else:
        lines.append(
            "Be empathetic and solution oriented, apologise where it is warranted, "
            "and invite the customer to get in touch. Never be defensive."
        )
    lines.append("Constraints: 2 to 4 sentences, no surrounding quotes, no placeholders.")
    if request.language:
        lines.append(f"Reply in the review's language ({request.language}).")
    else:
        lines.append("Reply in the same language as the review.")
    return "\n".join(lines)
