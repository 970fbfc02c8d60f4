import argparse
import asyncio
import logging
import sys
from datetime import date

import structlog
from pydantic import ValidationError

from evidence_research.cache import build_cache
from evidence_research.config import Settings
from evidence_research.models import ResearchMode, ResearchQuery, StageEvent
from evidence_research.orchestrator import run_pipeline
from evidence_research.utils.file_ops import atomic_write_json, atomic_write_text, run_output_dir


def _init_logging(level_name: str):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _progress(event: StageEvent) -> None:
    print(f"[{event.stage}] {event.title}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="evidence-research", description="Budgeted multi-provider research briefs")
    p.add_argument("--query", required=True, help="Research question (required)")
    p.add_argument("--mode", choices=[m.value for m in ResearchMode], default=ResearchMode.STANDARD.value)
    p.add_argument("--from", dest="date_from", type=_iso_date, default=None, help="Earliest publication date (inclusive)")
    p.add_argument("--to", dest="date_to", type=_iso_date, default=None, help="Latest publication date (inclusive)")
    p.add_argument("--output-dir", default=None, help="Base output directory (defaults to OUTPUT_DIR)")
    p.add_argument("--clear-cache", action="store_true", help="Drop cached provider responses before running")
    p.add_argument("--quiet", action="store_true", help="Suppress stage progress on stderr")
    return p


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    try:
        query = ResearchQuery(text=args.query, date_from=args.date_from, date_to=args.date_to, mode=args.mode)
    except ValidationError as e:
        print(f"Invalid query: {e.errors()[0]['msg']}", file=sys.stderr)
        return 2

    cache = build_cache(settings)
    try:
        if args.clear_cache:
            removed = await cache.clear()
            print(f"Cleared {removed} cached entries", file=sys.stderr)
        result = await run_pipeline(
            query,
            settings=settings,
            cache=cache,
            on_event=None if args.quiet else _progress,
        )
    finally:
        await cache.close()

    out_dir = run_output_dir(args.output_dir or settings.OUTPUT_DIR, query.text)
    atomic_write_text(out_dir / "final_report.md", result.markdown)
    atomic_write_json(out_dir / "report.json", result.report.model_dump(mode="json"))
    atomic_write_json(out_dir / "run_meta.json", result.meta.model_dump(mode="json"))
    print(f"Output directory: {out_dir}", file=sys.stderr)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    _init_logging(settings.LOG_LEVEL)
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
