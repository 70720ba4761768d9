"""Prompt templates for fact compilation, site summaries and answers."""

from __future__ import annotations

from typing import Final, Sequence

from .models import FACT_CATEGORIES, Page

BOT_TYPES: Final[tuple[str, ...]] = ("navigation", "qa", "whatsapp", "support", "general")
DEFAULT_BOT_TYPE: Final[str] = "general"

_BOT_SYSTEM_PROMPTS: Final[dict[str, str]] = {
    "navigation": (
        "You are an expert at creating navigation-focused chatbots. Generate questions and answers "
        "that help users find information, navigate the website and understand the site structure. "
        'Focus on "Where can I find...", "How do I access..." and "What pages are available..." '
        "questions. Make answers clear and include specific navigation guidance."
    ),
    "qa": (
        "You are an expert at creating comprehensive Q&A chatbots. Generate diverse questions covering "
        "all aspects of the website content including services, products, company information, "
        "policies and general inquiries. Make answers detailed and based strictly on the provided content."
    ),
    "whatsapp": (
        "You are an expert at creating WhatsApp business chatbots. Generate questions and answers suitable "
        "for mobile messaging, with concise but complete answers. Focus on customer service, product "
        "inquiries and business information. Keep answers conversational and mobile-friendly."
    ),
    "support": (
        "You are an expert at creating customer support chatbots. Generate questions about common issues, "
        "troubleshooting, policies, contact information and problem resolution. Make answers "
        "solution-oriented and actionable. Include relevant contact information when available."
    ),
    "general": (
        "You are an expert at creating general-purpose chatbots. Generate a balanced mix of questions "
        "covering navigation, information, services and support topics. Make answers comprehensive "
        "and helpful for a wide range of user needs."
    ),
}

PAGE_SEPARATOR: Final[str] = "\n\n---PAGE_SEPARATOR---\n\n"

_FACT_FORMAT: Final[str] = """{
  "qa_pairs": [
    {
      "question": "What is...",
      "answer": "Detailed answer based on the content...",
      "category": "general",
      "keywords": ["keyword1", "keyword2"],
      "confidence": 0.9
    }
  ]
}"""


def normalize_bot_type(bot_type: str | None) -> str:
    if not bot_type:
        return DEFAULT_BOT_TYPE
    cleaned = bot_type.strip().lower()
    return cleaned if cleaned in _BOT_SYSTEM_PROMPTS else DEFAULT_BOT_TYPE


def bot_system_prompt(bot_type: str | None) -> str:
    """Return the compilation system prompt for a bot type (unknown types map to general)."""

    return _BOT_SYSTEM_PROMPTS[normalize_bot_type(bot_type)]


def fact_batch_prompt(pages: Sequence[Page], bot_type: str, *, page_chars: int) -> str:
    blocks = [
        f"URL: {page.url}\nTitle: {page.title}\nDescription: {page.description}\n"
        f"Content: {page.body_text[:page_chars]}"
        for page in pages
    ]
    categories = ", ".join(sorted(FACT_CATEGORIES))
    return (
        "Based on the following website content, generate comprehensive question-answer pairs "
        f"that would be useful for a {normalize_bot_type(bot_type)} chatbot.\n\n"
        f"Website Content:\n{PAGE_SEPARATOR.join(blocks)}\n\n"
        "Generate 6-10 diverse Q&A pairs in JSON format with this exact structure:\n"
        f"{_FACT_FORMAT}\n\n"
        "Make sure answers are informative and based on the actual content provided. "
        f"Use one of these categories: {categories}."
    )


def overview_prompt(pages: Sequence[Page], *, page_chars: int) -> str:
    overview = "\n\n".join(f"{page.title}: {page.body_text[:page_chars]}" for page in pages)
    return (
        "Based on this website overview, generate 5 general questions and answers that users "
        f"commonly ask about websites:\n\n{overview}\n\n"
        "Generate questions like:\n"
        "- What is this website about?\n"
        "- What services/products do you offer?\n"
        "- How can I contact you?\n"
        "- What makes you different?\n"
        "- Who are you?\n\n"
        f"Return JSON format:\n{_FACT_FORMAT}"
    )


OVERVIEW_SYSTEM_PROMPT: Final[str] = (
    "You summarise websites into short, factual question and answer pairs. Respond with JSON only."
)

SUMMARY_SYSTEM_PROMPT: Final[str] = "You are an analyst who writes concise, factual website summaries."


def summary_prompt(pages: Sequence[Page], *, page_chars: int) -> str:
    content = "\n\n".join(f"{page.title}: {page.body_text[:page_chars]}" for page in pages)
    return (
        "Analyze the following website content and provide a comprehensive summary including:\n\n"
        "1. What the website is about (main purpose/business)\n"
        "2. Key services or products offered\n"
        "3. Target audience\n"
        "4. Unique features or benefits\n"
        "5. Contact information if available\n\n"
        f"Website Content:\n{content}\n\n"
        "Provide a structured summary in 2-3 paragraphs that would help someone understand "
        "what this website offers."
    )


def response_system_prompt(
    *,
    website_name: str,
    bot_type: str,
    description: str | None,
    context: str,
) -> str:
    """Build the system prompt used when answering a visitor's question."""

    bot_type = normalize_bot_type(bot_type)
    style = ""
    if bot_type == "whatsapp":
        style = "- Write short, mobile-friendly messages\n"
    return (
        f'You are a helpful chatbot for "{website_name}".\n\n'
        f"Bot Type: {bot_type}\n"
        f"Website: {description or website_name}\n\n"
        "Instructions:\n"
        "- Use the provided context to answer user questions accurately and helpfully\n"
        "- If the context doesn't contain relevant information, politely say you don't have that specific information\n"
        "- Keep responses concise but informative (2-3 sentences max)\n"
        "- Match the tone appropriate for the bot type\n"
        f"{style}"
        "- If asked about contact information, provide it if available in the context\n\n"
        f"Context Information:\n{context}"
    )


__all__ = [
    "BOT_TYPES",
    "DEFAULT_BOT_TYPE",
    "OVERVIEW_SYSTEM_PROMPT",
    "SUMMARY_SYSTEM_PROMPT",
    "bot_system_prompt",
    "fact_batch_prompt",
    "normalize_bot_type",
    "overview_prompt",
    "response_system_prompt",
    "summary_prompt",
]
