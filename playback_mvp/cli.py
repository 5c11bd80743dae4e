"""Command-line interface for the playback engine."""
from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from dotenv import load_dotenv

from .executor import Player, PlayerSettings, summarize
from .loader import load_recording
from .models import Guardrails, PlaybackState
from .selector_cache import JsonFileCacheStore, SelectorCacheManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a recorded UI walkthrough against a live app")
    parser.add_argument("--recording", required=True, help="Path to the recording JSON file")
    parser.add_argument(
        "--backend",
        required=True,
        help="Automation backend factory as 'module:callable' (called with no arguments)",
    )
    parser.add_argument(
        "--locale",
        action="append",
        help="Locale to replay (repeatable; default: a single 'default' run)",
    )
    parser.add_argument("--output", default="output", help="Directory for screenshots and run.json (default: output)")
    parser.add_argument("--cache-dir", default="cache", help="Selector cache directory (default: cache)")
    parser.add_argument("--no-cache", action="store_true", help="Disable selector caching")
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Drop cached selectors for the recording (the given locales, or all) before replaying",
    )
    parser.add_argument("--fallback", action="store_true", help="Enable decision-service fallback for lost elements")
    parser.add_argument("--max-steps", type=int, default=50, help="Maximum steps per recording")
    parser.add_argument("--step-timeout", type=float, default=10.0, help="Per-step timeout in seconds")
    parser.add_argument("--run-timeout", type=float, default=300.0, help="Total run timeout in seconds")
    parser.add_argument("--step-retries", type=int, default=2, help="Retries per step after the first attempt")
    parser.add_argument(
        "--forbid",
        action="append",
        default=[],
        help="Forbidden action pattern, matched case-insensitively (repeatable)",
    )
    parser.add_argument("--cost-cap", type=float, default=1.0, help="Decision-service spend cap in USD")
    parser.add_argument("--summary", action="store_true", help="Print each run.json payload to stdout")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def resolve_factory(target: str) -> Callable[[], Any]:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Backend must be given as 'module:callable', got '{target}'")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"'{attr}' in module '{module_name}' is not callable")
    return factory


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    guardrails = Guardrails(
        max_steps=args.max_steps,
        step_timeout=args.step_timeout,
        run_timeout=args.run_timeout,
        step_retries=args.step_retries,
        forbidden_actions=tuple(args.forbid),
        cost_cap_usd=args.cost_cap,
    )
    settings = PlayerSettings(
        output_root=Path(args.output),
        enable_fallback=args.fallback,
        no_cache=args.no_cache,
    )

    try:
        recording = load_recording(args.recording)
        backend = resolve_factory(args.backend)()
    except (OSError, ValueError, ImportError) as exc:
        logging.error("Cannot start playback: %s", exc)
        return 2

    cache_manager = SelectorCacheManager(JsonFileCacheStore(Path(args.cache_dir)))
    if args.clear_cache:
        for locale in args.locale or [None]:
            cache_manager.clear(recording.id, locale)

    player = Player(
        backend,
        guardrails=guardrails,
        settings=settings,
        cache_manager=cache_manager,
    )

    results = []
    for locale in args.locale or [None]:
        result = player.replay(recording, locale)
        results.append(result)

        print("")
        print("=" * 80)
        print(f"Recording: {recording.name} ({result.locale})")
        print(f"State: {result.state.value}")
        print(f"Passed steps: {result.success_count}/{len(result.steps)} of {len(recording.steps)}")
        if result.error:
            print(f"Error: {result.error_code}: {result.error}")
        for step in result.steps:
            if step.status == "failed":
                print(f"  ✗ step {step.step_index}: {step.error_code or 'ERROR'} {step.error}")
        print(f"Screenshots: {len(result.screenshots)} (failed: {len(result.screenshot_failures)})")
        print(f"Duration: {result.duration:.2f}s, decision cost: ${result.cost_usd:.4f}")
        if result.artifacts_dir:
            print(f"Artifacts: {result.artifacts_dir}")

        if args.summary:
            print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))

    if len(results) > 1:
        print("")
        print(json.dumps(summarize(results), indent=2))

    ok = all(item.state == PlaybackState.COMPLETED and item.failure_count == 0 for item in results)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
