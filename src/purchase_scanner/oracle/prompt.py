"""Prompt contract for extracting clothing purchases from order emails."""

from __future__ import annotations

PROMPT_VERSION = "purchase-extract-v1"

SYSTEM_INSTRUCTION = (
    "You are a strict data extraction tool. You extract purchased clothing line items "
    "from ONE order confirmation email at a time. You never guess, infer or invent "
    "information, and you never reuse items from examples or from other emails. "
    "When you are not sure, you return an empty item list. Accuracy matters more "
    "than completeness. You answer with a single JSON object and nothing else."
)

_CONTRACT = (
    "Rules:\n"
    "- Extract ONLY items whose names are written in THIS email excerpt.\n"
    "- Only confirmed orders count. Shipping-only notices, marketing, abandoned carts, "
    "wishlists, returns and refunds have NO items.\n"
    "- Only wearable clothing, footwear and wearable accessories count. Skip home goods, "
    "food, drinks, beauty products, electronics, books, gift cards and subscriptions.\n"
    "- Copy item names as written. Do not shorten a name to the brand.\n"
    "- If the email says it contains items but does not list them, return no items.\n"
    "- When uncertain, return an empty items list.\n"
    "- The schema below is a format description, not an example answer. Never copy it.\n"
)

_SCHEMA = (
    "Return ONLY valid JSON. No markdown. No code fences. No commentary.\n"
    "{\n"
    '  "items": [\n'
    "    {\n"
    '      "name": string,\n'
    '      "quantity": number|null,\n'
    '      "price": number|null,\n'
    '      "type": string|null (e.g. jeans, shirt, sneakers),\n'
    '      "color": string|null,\n'
    '      "brand": string|null,\n'
    '      "image_url": string|null (only a URL listed in the excerpt)\n'
    "    }\n"
    "  ],\n"
    '  "order_number": string|null,\n'
    '  "purchase_date": string|null in ISO format YYYY-MM-DD,\n'
    '  "store": string|null (the retailer that sent the order),\n'
    '  "total": number|null\n'
    "}\n"
)


def build_purchase_extraction_prompt(
    *,
    excerpt: str,
    subject: str | None,
    from_address: str | None,
    sender_domain: str | None,
) -> str:
    """Build a prompt that requests strict JSON output.

    The rules are stated before and again after the excerpt so that long
    excerpts do not push them out of the model's attention.

    Args:
        excerpt: Reduced email text.
        subject: Email subject (may be None).
        from_address: Sender address.
        sender_domain: Sender domain.

    Returns:
        Prompt string.
    """

    subj = (subject or "").strip()
    sender = (from_address or "").strip()
    dom = (sender_domain or "").strip()

    return (
        "Extract the clothing purchase from the order email below.\n\n"
        f"{_CONTRACT}\n"
        f"{_SCHEMA}\n"
        f"Email metadata: subject={subj!r}, from={sender!r}, sender_domain={dom!r}.\n\n"
        "Email excerpt:\n"
        "---\n"
        f"{(excerpt or '').strip()}\n"
        "---\n\n"
        "Reminder of the rules for THIS email only:\n"
        f"{_CONTRACT}\n"
        'If nothing qualifies, return {"items": [], "order_number": null, '
        '"purchase_date": null, "store": null, "total": null}.\n'
    )
