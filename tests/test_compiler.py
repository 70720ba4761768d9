from __future__ import annotations

import json

import httpx
import pytest

from sitechat.compiler import KnowledgeCompiler, MalformedResponse, ParsedFacts, parse_fact_response
from sitechat.errors import ExternalServiceError
from sitechat.generation import GenerationService
from sitechat.models import Page, utc_now
from sitechat.prompts import OVERVIEW_SYSTEM_PROMPT, bot_system_prompt

from conftest import FakeGenerationService, make_settings, words


def _page(path: str, text: str | None = None) -> Page:
    body = text or words(path.strip("/") or "home")
    return Page(
        url=f"https://example.com{path}",
        title=path,
        description="",
        keywords="",
        body_text=body,
        headings=(),
        nav_links=(),
        word_count=len(body.split()),
        scraped_at=utc_now(),
    )


def test_parse_accepts_fenced_json_with_surrounding_text() -> None:
    reply = (
        "Here you go:\n```json\n"
        + json.dumps(
            {
                "qa_pairs": [
                    {"question": "Q1?", "answer": "A1", "category": "Support", "keywords": ["a", " ", "b"]},
                    {"question": "Q2?", "answer": "A2", "category": "weird", "keywords": "x, y", "confidence": 1.7},
                ]
            }
        )
        + "\n```\nThanks!"
    )

    result = parse_fact_response(reply)

    assert isinstance(result, ParsedFacts)
    first, second = result.items
    assert first.category == "support"
    assert first.keywords == ("a", "b")
    assert first.confidence is None
    assert second.category == "general"
    assert second.keywords == ("x", "y")
    assert second.confidence == 1.0


def test_parse_drops_invalid_items() -> None:
    reply = json.dumps(
        {
            "qa_pairs": [
                {"question": "", "answer": "no question"},
                {"question": "No answer?"},
                "not an object",
                {"question": "Kept?", "answer": "Yes", "confidence": True},
            ]
        }
    )

    result = parse_fact_response(reply)

    assert isinstance(result, ParsedFacts)
    assert result.dropped == 3
    assert [item.question for item in result.items] == ["Kept?"]
    assert result.items[0].confidence is None


@pytest.mark.parametrize(
    "reply",
    [
        "I could not produce any questions.",
        '{"qa_pairs": [ {"question": "broken"',
        '{"answers": []}',
        '{"qa_pairs": "nope"}',
    ],
)
def test_parse_reports_malformed_replies(reply: str) -> None:
    assert isinstance(parse_fact_response(reply), MalformedResponse)


@pytest.mark.asyncio
async def test_compile_batches_pages_and_adds_overview(tmp_path) -> None:
    settings = make_settings(tmp_path, compiler_batch_size=2, overview_pages=2)
    generation = FakeGenerationService()
    compiler = KnowledgeCompiler(settings, generation)
    pages = [_page("/"), _page("/about"), _page("/services", "Our alpha plan includes hosting. " + words("svc"))]

    facts = await compiler.compile(pages, "support")

    batch_calls = [call for call in generation.calls if call[0] == bot_system_prompt("support")]
    overview_calls = [call for call in generation.calls if call[0] == OVERVIEW_SYSTEM_PROMPT]
    assert len(batch_calls) == 2
    assert len(overview_calls) == 1

    by_question = {fact.question: fact for fact in facts}
    alpha = by_question["What does the alpha plan include?"]
    assert alpha.source_pages == ("https://example.com/services",)
    assert alpha.category == "product"
    assert alpha.keywords == ("alpha", "plan")
    assert alpha.confidence == 0.9

    overview = by_question["What is this website about?"]
    assert overview.confidence == settings.overview_fact_confidence
    assert overview.source_pages == ("https://example.com/", "https://example.com/about")

    first_batch = by_question["What can I find at https://example.com/about?"]
    assert first_batch.source_pages == ("https://example.com/", "https://example.com/about")


@pytest.mark.asyncio
async def test_malformed_batch_is_skipped(tmp_path) -> None:
    settings = make_settings(tmp_path, compiler_batch_size=1, overview_pages=0)

    def reply(prompt: str) -> str:
        if "/broken" in prompt:
            return "not json at all"
        return json.dumps({"qa_pairs": [{"question": "Fine?", "answer": "Yes."}]})

    compiler = KnowledgeCompiler(settings, FakeGenerationService(fact_reply=reply))

    facts = await compiler.compile([_page("/broken"), _page("/ok")], "general")

    assert [fact.question for fact in facts] == ["Fine?"]
    assert facts[0].confidence == settings.default_fact_confidence
    assert facts[0].source_pages == ("https://example.com/ok",)


@pytest.mark.asyncio
async def test_generation_failures_yield_no_facts(tmp_path) -> None:
    settings = make_settings(tmp_path, overview_pages=0)

    class FailingGeneration:
        def generate(self, *args, **kwargs):
            raise ExternalServiceError("fake", "offline")

    compiler = KnowledgeCompiler(settings, FailingGeneration())

    assert await compiler.compile([_page("/")], "qa") == ()


@pytest.mark.asyncio
async def test_unknown_bot_type_uses_general_prompt(tmp_path) -> None:
    settings = make_settings(tmp_path, overview_pages=0)
    generation = FakeGenerationService()
    compiler = KnowledgeCompiler(settings, generation)

    await compiler.compile([_page("/")], "telepathy")

    assert generation.calls[0][0] == bot_system_prompt("general")


@pytest.mark.asyncio
async def test_non_json_backend_reply_only_skips_its_batch(tmp_path) -> None:
    settings = make_settings(tmp_path, compiler_batch_size=1, overview_pages=0, chat_backend="ollama")
    replies = [
        httpx.Response(200, text="<html>gateway hiccup</html>"),
        httpx.Response(
            200,
            json={"message": {"content": json.dumps({"qa_pairs": [{"question": "Fine?", "answer": "Yes."}]})}},
        ),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return replies.pop(0)

    with httpx.Client(transport=httpx.MockTransport(handler)) as http:
        compiler = KnowledgeCompiler(settings, GenerationService(settings, http_client=http))
        facts = await compiler.compile([_page("/first"), _page("/second")], "general")

    assert [fact.question for fact in facts] == ["Fine?"]
    assert facts[0].source_pages == ("https://example.com/second",)
    assert replies == []
