from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

import numpy as np
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .audio import SAMPLE_RATE, write_wav
from .config import EngineConfig, PlaybackSettings
from .dispatcher import PlaybackDispatcher
from .keys import KeyCategory, classify, pan_for_key
from .logging_utils import configure_logging, log_exception
from .profiles import PROFILES, get_profile
from .sink import OutputSink, load_backend, null_backend
from .synth import render

_LOGGER = logging.getLogger("mechvibe.cli")
_CONSOLE = Console()
_ERR_CONSOLE = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mechvibe")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("profiles", help="List the built-in switch profiles.")

    render_cmd = sub.add_parser("render", help="Render one keystroke to a WAV file.")
    render_cmd.add_argument("profile", type=str)
    render_cmd.add_argument(
        "category",
        nargs="?",
        default=KeyCategory.DEFAULT.value,
        choices=[category.value for category in KeyCategory],
    )
    render_cmd.add_argument("--output", type=str, default=None)
    render_cmd.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    render_cmd.add_argument("--pitch-variation", type=float, default=0.0)
    render_cmd.add_argument("--seed", type=int, default=None)

    classify_cmd = sub.add_parser("classify", help="Show how a key maps to a sound category.")
    classify_cmd.add_argument("key", type=str)
    classify_cmd.add_argument("code", nargs="?", default="")

    demo = sub.add_parser("demo", help="Play the test keystroke sequence.")
    demo.add_argument("--profile", type=str, default="tactile")
    demo.add_argument("--silent", action="store_true", help="Use the null output backend.")
    demo.add_argument("--interval", type=float, default=0.15)
    return parser


def _print_profiles() -> None:
    table = Table(title="Switch profiles")
    table.add_column("id", style="bold", no_wrap=True)
    table.add_column("name")
    table.add_column("description")
    table.add_column("volume", justify="right")
    table.add_column("pitch", justify="right")
    table.add_column("overlap")
    for profile in PROFILES.values():
        recommended = profile.recommended
        table.add_row(
            profile.id,
            profile.name,
            profile.description,
            f"{recommended.volume:.2f}",
            f"{recommended.pitch:.2f}",
            "yes" if recommended.overlap else "no",
        )
    _CONSOLE.print(table)


def _render(args: argparse.Namespace) -> Path:
    profile = get_profile(args.profile)
    buffer = render(
        profile,
        args.category,
        args.pitch_variation,
        args.sample_rate,
        rng=np.random.default_rng(args.seed),
    )
    output = args.output or f"{profile.id}-{buffer.category.value}.wav"
    return write_wav(output, buffer.samples, sample_rate=buffer.sample_rate)


async def _demo(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env()
    settings = PlaybackSettings.recommended(get_profile(args.profile))
    backend = null_backend() if args.silent else load_backend()
    with OutputSink(sample_rate=config.sample_rate, volume=settings.volume, backend=backend) as sink:
        dispatcher = PlaybackDispatcher(sink, settings=settings, config=config)
        await dispatcher.initialize()
        _CONSOLE.print(
            f"Playing {dispatcher.active_profile} ({dispatcher.mode}) on {sink.backend_name}"
        )
        voices = await dispatcher.play_test_sequence(args.interval)
        tail = max((voice.buffer.duration for voice in voices), default=0.0)
        await asyncio.sleep(tail)
    _CONSOLE.print(f"Played {len(voices)} keystrokes")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    try:
        match args.command:
            case "profiles":
                _print_profiles()
                return 0
            case "render":
                path = _render(args)
                _CONSOLE.print(f"Wrote {args.profile}/{args.category} to {path}")
                return 0
            case "classify":
                category = classify(args.key, args.code)
                pan = pan_for_key(args.key, args.code)
                _CONSOLE.print(f"{escape(repr(args.key))} -> {category.value} (pan {pan:+.1f})")
                return 0
            case "demo":
                return asyncio.run(_demo(args))
        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get("MECHVIBE_DEBUG"))
        _LOGGER.warning("mechvibe CLI failed: %s", exc, exc_info=debug)
        path = log_exception("mechvibe CLI", exc)
        _ERR_CONSOLE.print(f"[bold red]mechvibe {args.command} failed:[/] {escape(str(exc))}")
        if path is not None:
            _ERR_CONSOLE.print(f"[dim]Details logged to {path}[/]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
