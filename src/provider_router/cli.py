"""
Command-Line Interface for provider-router.

Runs summaries and speech through a RouterContext without the HTTP server.

Usage Examples:
    # Summarise one text through the free-first routing order
    provider-router --text "Long article text..." --language en

    # Positional text (same as above)
    provider-router "Long article text..."

    # Batch: one text per line
    provider-router --file inputs.txt --json

    # Dry-run mode (no network, shows routing candidates and estimates)
    provider-router --text "Test" --dry-run --json

    # Force a provider
    provider-router --text "Test" --provider gemini_free

    # Speak text to a file
    provider-router --text "Hello there." --speak hello.mp3

    # Show the chunk plan for speech without synthesising
    provider-router --file chapter.txt --plan

    # Catalog and usage
    provider-router --providers
    provider-router --usage

Environment Variables:
    PROVIDER_ROUTER_SETTINGS: Settings file (default config/settings.yaml)
    PROVIDER_ORDER, DISABLE_PAID, DRY_RUN, ...: Routing overrides
    OPENAI_API_KEY, GOOGLE_API_KEY, ...: Provider keys
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from provider_router.core.config import load_settings
from provider_router.core.errors import RouterError
from provider_router.core.logging import configure_logging, fail, get_logger, info, set_request_id
from provider_router.routing.usage import estimate_tokens_from_text
from provider_router.services.context import RouterContext


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="provider-router CLI (serverless routing)")

    # Input options (mutually exclusive: text vs file)
    parser.add_argument("text_pos", nargs="?", help="Text to summarise (positional)")
    parser.add_argument("--text", help="Text to summarise")
    parser.add_argument("--file", help="Batch input file (1 line = 1 item; whole file with --speak/--plan)")

    # Routing overrides
    parser.add_argument("--provider", help="Provider preference (id, alias or auto)")
    parser.add_argument("--language", help="Summary language")
    parser.add_argument("--url", help="Page URL recorded with usage")
    parser.add_argument("--settings", help="Settings file path")

    # Speech
    parser.add_argument("--speak", metavar="OUT", help="Synthesise the text into OUT")
    parser.add_argument("--voice", help="Voice override for --speak")
    parser.add_argument("--plan", action="store_true", help="Print the speech chunk plan only")

    # Execution modes
    parser.add_argument("--dry-run", action="store_true", help="Route without network calls")
    parser.add_argument("--json", action="store_true", help="Print JSON summary")

    # Inspection
    parser.add_argument("--providers", action="store_true", help="List catalog providers")
    parser.add_argument("--usage", action="store_true", help="Show token usage")
    parser.add_argument("--reset-usage", action="store_true", help="Zero the token usage counters")

    return parser.parse_args(argv)


def _load_texts(args: argparse.Namespace, whole_file: bool = False) -> List[str]:
    """
    Load input texts from arguments or file.

    Raises:
        SystemExit: If no input provided or conflicting options used.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            raise SystemExit("Use --file without --text or positional text.")
        content = Path(args.file).read_text(encoding="utf-8")
        if whole_file:
            if not content.strip():
                raise SystemExit("Input file is empty.")
            return [content]
        items = [line.strip() for line in content.splitlines() if line.strip()]
        if not items:
            raise SystemExit("Input file is empty.")
        return items

    if not text:
        raise SystemExit("Provide --text or a positional text.")
    return [text]


def _print(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)


def _build_context(args: argparse.Namespace) -> RouterContext:
    path = args.settings or os.getenv("PROVIDER_ROUTER_SETTINGS", "config/settings.yaml")
    settings = load_settings(path, missing_ok=args.settings is None)
    env = dict(os.environ)
    if args.dry_run:
        env["DRY_RUN"] = "1"
    return RouterContext(settings, env=env)


async def _summarise(context: RouterContext, texts: List[str], args: argparse.Namespace, language: str) -> List[Dict[str, Any]]:
    items = []
    for index, text in enumerate(texts):
        result = await context.generate(
            text,
            language,
            args.provider,
            {"url": args.url, "segmentId": index, "type": "cli"},
        )
        item = result.to_dict()
        item["text_len"] = len(text)
        if result.dry_run:
            item["candidates"] = context.router.candidates(args.provider)
            item["estimated_prompt_tokens"] = estimate_tokens_from_text(text)
        items.append(item)
    return items


async def _speak(context: RouterContext, text: str, args: argparse.Namespace, language: Optional[str]) -> Dict[str, Any]:
    outcome = await context.synthesise(text, args.voice, language, args.provider)
    out_path = Path(args.speak)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    audio = base64.b64decode(outcome.audio_base64)
    out_path.write_bytes(audio)
    return {
        "out": str(out_path),
        "bytes": len(audio),
        "provider": outcome.provider,
        "mime_type": outcome.mime_type,
        "plan": outcome.plan.to_dict(),
        "tokens_charged": outcome.tokens_charged,
    }


def _plan(context: RouterContext, text: str, provider: Optional[str]) -> Dict[str, Any]:
    adapter = context.router.get_adapter(context.direct_provider(provider))
    plan = context.planner.plan_with_ceiling(
        text,
        adapter.speech_capability(),
        context.config.speech.max_total_tokens,
    )
    return {"provider": adapter.kind, **plan.to_dict(), "texts": plan.texts}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("provider-router.cli")
    set_request_id(str(uuid4())[:12])

    context = _build_context(args)

    if args.providers:
        order = context.router.candidates()
        rows = [
            {**d.to_dict(), "tier": context.catalog.tier(d.id).value if d.id != "auto" else None,
             "in_order": d.id in order}
            for d in context.catalog.descriptors()
        ]
        _print({"ok": True, "order": order, "providers": rows}, args.json)
        return 0

    if args.usage or args.reset_usage:
        usage = asyncio.run(context.reset_usage() if args.reset_usage else context.usage())
        _print({"ok": True, "usage": usage}, args.json)
        return 0

    language = args.language or os.getenv("PROVIDER_ROUTER_LANGUAGE") or "en"

    try:
        if args.plan:
            texts = _load_texts(args, whole_file=True)
            _print({"ok": True, "plan": _plan(context, texts[0], args.provider)}, args.json)
            return 0

        if args.speak:
            texts = _load_texts(args, whole_file=True)
            info(log, "speak_start", chars=len(texts[0]), out=args.speak)
            result = asyncio.run(_speak(context, texts[0], args, args.language))
            _print({"ok": True, "items": [result]}, args.json)
            print("CLI_OK")
            return 0

        texts = _load_texts(args)
        items = asyncio.run(_summarise(context, texts, args, language))
    except RouterError as e:
        fail(log, "cli_failed", error=e.code, message=e.message)
        _print(e.to_dict(), args.json)
        return 1

    payload = {"ok": True, "dry_run": args.dry_run, "items": items}
    if args.dry_run:
        info(log, "dry_run", items=len(texts), language=language, provider=args.provider or "auto")
    _print(payload, args.json)
    print("DRY_RUN_OK" if args.dry_run else "CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
