# run_web2md.py
"""
Convert one URL from the command line without starting the API.

    python run_web2md.py https://example.com/post
    python run_web2md.py https://example.com/post --json --force-engine local
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Make the repo root importable
repo_root = Path(__file__).resolve().parent
if str(repo_root) not in sys.path:
    sys.path.append(str(repo_root))

from loguru import logger

from core.config import get_settings
from core.container import ServiceContainer
from core.exceptions import Web2MdException
from core.logging import configure_logging
from models.snapshot import ResolveMode


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert a web page to markdown")
    parser.add_argument("url", help="http(s) URL to convert")
    parser.add_argument("--revalidate", action="store_true", help="ignore any cached snapshot")
    parser.add_argument("--force-engine", help="run a single engine (debugging)")
    parser.add_argument("--model", help="OpenRouter model for the LLM stage")
    parser.add_argument("--json", action="store_true", help="print the full snapshot as JSON")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    if args.force_engine:
        settings = settings.model_copy(update={"FORCE_ENGINE": args.force_engine.strip().lower()})
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    services = await ServiceContainer.create(settings)
    try:
        result = await services.snapshots.resolve(
            args.url,
            mode=ResolveMode.REVALIDATE if args.revalidate else ResolveMode.NORMAL,
            model_override=args.model,
        )
    except Web2MdException as exc:
        logger.error(f"[{exc.code}] {exc.message}")
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        await services.aclose()

    if args.json:
        print(json.dumps(result.to_wire(), indent=2))
    else:
        snapshot = result.snapshot
        logger.info(f"{snapshot.normalized_url} via {snapshot.source_engine} (v{snapshot.version})")
        print(snapshot.markdown)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
