"""CLI for building a website knowledge base in-process and querying it."""

from __future__ import annotations

import argparse
import asyncio
import sys

from sitechat.config import Settings
from sitechat.jobs import JobStatus
from sitechat.prompts import BOT_TYPES, DEFAULT_BOT_TYPE
from sitechat.service import SiteChatService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl a website and build a SiteChat knowledge base")
    parser.add_argument("url", help="Root URL of the website to crawl")
    parser.add_argument(
        "--bot-type",
        choices=BOT_TYPES,
        default=DEFAULT_BOT_TYPE,
        help="Flavour of questions to generate (default: %(default)s)",
    )
    parser.add_argument("--max-pages", type=int, default=None, help="Maximum number of pages to crawl")
    parser.add_argument(
        "--include-subdomains",
        action="store_true",
        help="Also crawl subdomains of the site's base domain",
    )
    parser.add_argument("--name", dest="bot_name", help="Display name for the website")
    parser.add_argument(
        "--ask",
        action="append",
        default=[],
        metavar="QUESTION",
        help="Question to answer once the knowledge base is ready (repeatable)",
    )
    return parser


async def _run(args: argparse.Namespace, service: SiteChatService) -> int:
    job_id = service.start_generation(
        args.url,
        bot_type=args.bot_type,
        max_pages=args.max_pages,
        include_subdomains=args.include_subdomains,
        bot_name=args.bot_name,
    )
    print(f"Started job {job_id} for {args.url}")
    job = await service.wait_for(job_id)
    if job is None:
        print("Job record disappeared before completion", file=sys.stderr)
        return 1
    if job.status is not JobStatus.COMPLETED:
        print(f"Job {job_id} {job.status.value}: {job.error_message or 'unknown error'}", file=sys.stderr)
        return 1

    print(
        f"Indexed {job.pages_scraped} page{'s' if job.pages_scraped != 1 else ''} "
        f"and {job.qa_pairs_generated} fact{'s' if job.qa_pairs_generated != 1 else ''} "
        f"({job.crawl_errors} crawl error{'s' if job.crawl_errors != 1 else ''})"
    )
    if job.summary:
        print()
        print(job.summary)

    for question in args.ask:
        answer = await service.answer_query(job_id, question)
        print()
        print(f"Q: {question}")
        print(f"A: {answer.response}")
        print(f"   confidence={answer.confidence:.2f}")
        for source in answer.sources:
            print(f"   - {source}")
    return 0


def main(argv: list[str] | None = None, *, service: SiteChatService | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.max_pages is not None and args.max_pages < 1:  # pragma: no cover - CLI validation
        parser.error("--max-pages must be at least 1")

    service = service or SiteChatService.from_settings(Settings.from_env())
    try:
        return asyncio.run(_run(args, service))
    finally:
        service.close()


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
