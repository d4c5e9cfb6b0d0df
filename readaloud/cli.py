"""CLI interface: read a text file aloud with interactive transport controls."""

import argparse
import asyncio
import logging
import os
import signal
import sys

from readaloud.config import config_from_args, load_config
from readaloud.constants import DEFAULT_CONFIG_FILE, DEFAULT_LANG, RATE_STEP, VERSION
from readaloud.models import PlaybackCallbacks, PlaybackState
from readaloud.scheduler import PlaybackScheduler
from readaloud.segmenter import build_matrix, split_paragraphs
from readaloud.timeline import compute_timeline
from readaloud.tts import EdgeSpeechBackend
from readaloud.voices import filter_voices, load_voice_catalog
from readaloud.wakelock import SystemdInhibitProvider, WakeLockManager

logger = logging.getLogger(__name__)

CONTROLS_HELP = """Controls (type a command, then Enter):
  p  play/pause      s  stop          q  quit
  n  next paragraph  b  previous paragraph
  f  next sentence   r  previous sentence
  j N  jump to paragraph N          t SECONDS  seek
  +  faster          -  slower      i  status"""

# Single-key commands that map straight onto scheduler operations
ACTIONS = {
    "s": "stop",
    "n": "skip_forward",
    "b": "skip_backward",
    "f": "skip_sentence_forward",
    "r": "skip_sentence_backward",
}


def format_seconds(seconds: float) -> str:
    seconds = int(round(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def _preview(text: str, width: int = 70) -> str:
    return text if len(text) <= width else text[: width - 1].rstrip() + "…"


def _read_article(file_path: str) -> list[str]:
    """Load paragraphs from a text file, exiting with a message on bad input."""
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    with open(file_path, encoding="utf-8") as f:
        text = f.read()

    if not text.strip():
        print(f"Error: File is empty: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    paragraphs = split_paragraphs(text)
    if not paragraphs:
        print(f"Error: No readable paragraphs in: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    return paragraphs


def format_status(scheduler: PlaybackScheduler) -> str:
    snap = scheduler.snapshot
    timeline = scheduler.timeline()
    return (
        f"{scheduler.state.value}: paragraph {snap.current_paragraph + 1}/{snap.total_paragraphs}, "
        f"sentence {snap.current_sentence + 1}, "
        f"~{format_seconds(timeline.position)} / ~{format_seconds(timeline.duration)} "
        f"at {scheduler.config.rate:.1f}x"
    )


def dispatch_command(scheduler: PlaybackScheduler, line: str) -> bool:
    """Apply one typed command. Returns False when the user asked to quit."""
    parts = line.split()
    if not parts:
        return True
    cmd, rest = parts[0].lower(), parts[1:]

    if cmd == "q":
        return False
    if cmd in ACTIONS:
        getattr(scheduler, ACTIONS[cmd])()
    elif cmd == "p":
        if scheduler.state is PlaybackState.PLAYING:
            scheduler.pause()
        else:
            scheduler.play()
    elif cmd == "j":
        try:
            scheduler.jump_to_paragraph(int(rest[0]) - 1)
        except (IndexError, ValueError):
            print("Usage: j <paragraph number>")
    elif cmd == "t":
        try:
            scheduler.seek_to_time(float(rest[0]))
        except (IndexError, ValueError):
            print("Usage: t <seconds>")
    elif cmd in ("+", "-"):
        step = RATE_STEP if cmd == "+" else -RATE_STEP
        scheduler.set_rate(round(scheduler.config.rate + step, 2))
        print(f"Rate: {scheduler.config.rate:.1f}x (from the next sentence)")
    elif cmd == "i":
        print(format_status(scheduler))
    else:
        print(CONTROLS_HELP)
    return True


async def read_aloud(paragraphs: list[str], lang: str, config, start: int = 1, stdin=None) -> None:
    """Play paragraphs until the article ends or the user quits."""
    loop = asyncio.get_running_loop()
    stdin = stdin if stdin is not None else sys.stdin
    done = asyncio.Event()

    def on_paragraph(change):
        print(f"[{change.index + 1}/{len(paragraphs)}] {_preview(change.text)}")

    def on_error(message):
        print(f"Error: {message}", file=sys.stderr)

    backend = EdgeSpeechBackend()
    wake_lock = WakeLockManager(SystemdInhibitProvider())
    scheduler = PlaybackScheduler(
        backend,
        wake_lock=wake_lock,
        callbacks=PlaybackCallbacks(
            on_paragraph_change=on_paragraph,
            on_end=done.set,
            on_error=on_error,
        ),
        config=config,
    )

    scheduler.set_voices(await load_voice_catalog())
    scheduler.load(paragraphs, lang)
    if scheduler.voice:
        logger.info("Using voice %s", scheduler.voice.name)
    if start > 1:
        scheduler.jump_to_paragraph(start - 1)

    def on_input():
        line = stdin.readline()
        if not line:
            # stdin closed: keep playing without controls
            loop.remove_reader(stdin)
            return
        if not dispatch_command(scheduler, line):
            done.set()

    interactive = _add_reader(loop, stdin, on_input)
    # Resumed after a shell suspend (Ctrl-Z, fg): speech may have been lost
    _add_signal_handler(loop, signal.SIGCONT, scheduler.on_visibility_change, True)

    if interactive:
        print(CONTROLS_HELP)
    scheduler.play()
    try:
        await done.wait()
        finished = scheduler.state is PlaybackState.ENDED
    finally:
        if interactive:
            loop.remove_reader(stdin)
        _remove_signal_handler(loop, signal.SIGCONT)
        scheduler.dispose()

    if finished:
        print("Finished.")


def _add_reader(loop, stdin, callback) -> bool:
    try:
        loop.add_reader(stdin, callback)
    except (NotImplementedError, ValueError, OSError) as e:
        logger.debug("Interactive controls unavailable: %s", e)
        return False
    return True


def _add_signal_handler(loop, signum, callback, *args) -> None:
    try:
        loop.add_signal_handler(signum, callback, *args)
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug("Cannot watch signal %s: %s", signum, e)


def _remove_signal_handler(loop, signum) -> None:
    try:
        loop.remove_signal_handler(signum)
    except (NotImplementedError, RuntimeError, ValueError):
        pass


def cmd_read(args):
    """Read a text file aloud."""
    paragraphs = _read_article(args.file)
    config = config_from_args(load_config(args.config), args)

    if args.start < 1 or args.start > len(paragraphs):
        print(f"Error: --start must be between 1 and {len(paragraphs)}", file=sys.stderr)
        raise SystemExit(1)

    try:
        asyncio.run(read_aloud(paragraphs, args.lang, config, start=args.start))
    except KeyboardInterrupt:
        print("\nStopped.")


def cmd_segment(args):
    """Show how a file will be split into spoken units."""
    paragraphs = _read_article(args.file)
    config = config_from_args(load_config(args.config), args)
    matrix = build_matrix(paragraphs)

    for p, sentences in enumerate(matrix):
        for s, text in enumerate(sentences):
            start = compute_timeline(matrix, p, s, config.rate).position
            label = f"[{p + 1}]" if s == 0 else ""
            print(f"{label:<6}{format_seconds(start):>6}  {text}")

    total = compute_timeline(matrix, 0, 0, config.rate).duration
    units = sum(len(s) for s in matrix)
    print(f"\n{len(matrix)} paragraphs, {units} units, ~{format_seconds(total)} at {config.rate:.1f}x (estimated)")


def cmd_voices(args):
    """List available voices."""
    voices = asyncio.run(load_voice_catalog())
    voices = filter_voices(voices, lang=args.lang, substring=args.filter)
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        gender = f", {v.gender}" if v.gender else ""
        print(f"  {v.name:<40} ({v.lang}{gender})")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="readaloud",
        description="Read articles aloud with sentence-level navigation",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # read
    read_parser = subparsers.add_parser("read", help="Read a text file aloud")
    read_parser.add_argument("file", help="Plain text file, paragraphs separated by blank lines")
    read_parser.add_argument("--lang", default=DEFAULT_LANG, help="Language code (default: %(default)s)")
    read_parser.add_argument("--rate", type=float, help="Speech rate, 0.5–3.0")
    read_parser.add_argument("--pitch", type=float, help="Pitch, 0.5–2.0")
    read_parser.add_argument("--voice", help="Preferred voice name")
    read_parser.add_argument("--wake-lock", action="store_true", help="Keep the machine awake while playing")
    read_parser.add_argument("--start", type=int, default=1, help="Paragraph to start at (1-based)")
    read_parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Settings file (default: %(default)s)")
    read_parser.set_defaults(func=cmd_read)

    # segment
    segment_parser = subparsers.add_parser("segment", help="Show sentence units and estimated timings")
    segment_parser.add_argument("file", help="Plain text file")
    segment_parser.add_argument("--rate", type=float, help="Speech rate used for estimates")
    segment_parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Settings file")
    segment_parser.set_defaults(func=cmd_segment)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--lang", help="Only voices for this language")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
