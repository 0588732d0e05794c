"""CLI entrypoint for the Research Exchange assistant."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from chat_history import ChatSessionStore, JsonFileHistoryBackend
from chat_service import ChatService, ChatSession, HttpChatClient
from entries_index import EntriesIndex
from entry_source import EntryRecordSource, HtmlEntrySource, JsonEntrySource, fetch_page_html
from relevance import ScoringWeights


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Grounded Q&A over the research entries page")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the chat API server")
    serve.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")))

    for name, help_text in (
        ("index", "List the indexed entries of a page"),
        ("search", "Rank entries for a query"),
        ("ask", "Ask the assistant one question"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--page", help="Path to the rendered HTML page")
        source.add_argument("--page-url", help="URL of the rendered HTML page")
        source.add_argument("--feed", help="Path to a JSON entries feed")
        sub.add_argument(
            "--base-url",
            default=os.getenv("SITE_PAGE_URL", ""),
            help="Public page URL used to build entry links",
        )
        if name in ("search", "ask"):
            sub.add_argument("query", help="Question or search text")
        if name == "search":
            sub.add_argument("--limit", type=int, default=5)
        if name == "ask":
            sub.add_argument("--email", required=True, help="Verified organization email")
            sub.add_argument("--server", default=None, help="Send to a running server instead of in-process")
            sub.add_argument("--team-data", default=None, help="Path to a team contributions JSON file")

    return parser.parse_args(argv)


def _source_factory(args: argparse.Namespace):
    def factory() -> EntryRecordSource:
        if args.page:
            return HtmlEntrySource(Path(args.page).read_text(encoding="utf-8"))
        if args.page_url:
            return HtmlEntrySource(fetch_page_html(args.page_url))
        return JsonEntrySource(json.loads(Path(args.feed).read_text(encoding="utf-8")))

    return factory


def run_index(index: EntriesIndex) -> None:
    for entry in index.all_entries():
        print(f"{entry.entry_id}\t{entry.title}\t{entry.url}")
    logging.info("Catalog contains %s entries", len(index.all_entries()))


def run_search(index: EntriesIndex, query: str, limit: int) -> None:
    results = index.relevant_entries(query, limit=limit)
    if not results:
        print("No relevant entries found.")
    for rank, scored in enumerate(results, start=1):
        print(f"{rank}. [{scored.score}] {scored.entry.title}\n   {scored.entry.url}")


def run_ask(index: EntriesIndex, args: argparse.Namespace) -> None:
    send = HttpChatClient(args.server) if args.server else ChatService(index=index).handle
    team_data = json.loads(Path(args.team_data).read_text(encoding="utf-8")) if args.team_data else None

    store = ChatSessionStore(client_id=args.email, backend=JsonFileHistoryBackend())
    restored = store.restore()
    logging.info("Restored %s prior turns", len(restored))

    session = ChatSession(store=store, index=index, send=send, user_email=args.email, team_data=team_data)
    print(session.ask(args.query))


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the requested command."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.command == "serve":
        import uvicorn  # noqa: PLC0415

        from server import create_app  # noqa: PLC0415

        uvicorn.run(create_app(), host=args.host, port=args.port)
        return

    base_url = args.base_url or args.page_url or ""
    index = EntriesIndex(_source_factory(args), page_url=base_url, weights=ScoringWeights.from_env())

    if args.command == "index":
        run_index(index)
    elif args.command == "search":
        run_search(index, args.query, args.limit)
    else:
        run_ask(index, args)


if __name__ == "__main__":
    main()
