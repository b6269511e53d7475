"""CLI interface with subcommand routing."""

import argparse
import asyncio
import json
import logging
import os
import shutil
import sys
import time
from dataclasses import asdict, fields

from voicemark.config import Settings, load_settings, save_settings
from voicemark.constants import DEFAULT_CHARACTER, NARRATOR_VOICE_ID, SETTINGS_FILE, VERSION
from voicemark.errors import ConfigError
from voicemark.instructions import build_instructions
from voicemark.markers import describe_marker, format_emotions, parse_markers
from voicemark.models import Segment
from voicemark.segmenter import segment_text
from voicemark.session import NarrationSession
from voicemark.streaming import StreamSegmenter
from voicemark.voices import load_sample

_KIND_LABELS = {"n": "narrator", "a": "action", "c": "character"}


def _check_ffmpeg():
    """Verify ffmpeg is installed."""
    if not shutil.which("ffmpeg"):
        print("Error: ffmpeg is required but not found.", file=sys.stderr)
        print("Install with: brew install ffmpeg", file=sys.stderr)
        raise SystemExit(1)


def _read_text(file_path: str) -> str:
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    with open(file_path) as f:
        text = f.read()
    if not text.strip():
        print(f"Error: File is empty: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    return text


def _print_segment(number: int, seg: Segment) -> None:
    label = _KIND_LABELS.get(seg.kind, seg.kind)
    print(f"  [{number}] {label:<9} {seg.character} ({seg.voice_file}, {format_emotions(seg.emotions)})")
    print(f"      {seg.text}")


def cmd_markers(args):
    """List the markers found in a text file."""
    text = _read_text(args.file)
    markers = parse_markers(text)
    if not markers:
        print("No markers found.")
        return
    print(f"Found {len(markers)} markers:")
    for marker in markers:
        print(f"  @{marker.position:<6} {describe_marker(marker)}")


def cmd_segments(args):
    """Split a text file into segments without playing them."""
    text = _read_text(args.file)
    segments = segment_text(text, parse_markers(text))

    if args.json:
        print(json.dumps([asdict(s) for s in segments], indent=2))
        return

    if not segments:
        print("No segments.")
        return
    counts = {label: 0 for label in _KIND_LABELS.values()}
    for seg in segments:
        counts[_KIND_LABELS[seg.kind]] += 1
    print(
        f"Parsed {len(segments)} segments "
        f"({counts['narrator']} narrator, {counts['action']} action, {counts['character']} character)"
    )
    for i, seg in enumerate(segments):
        _print_segment(i + 1, seg)


def cmd_stream(args):
    """Replay a file as a token stream and show segments as paragraphs close."""
    text = _read_text(args.file)
    if args.chunk_size < 1:
        print("Error: --chunk-size must be at least 1", file=sys.stderr)
        raise SystemExit(1)

    count = 0

    def show(segments):
        nonlocal count
        for seg in segments:
            count += 1
            _print_segment(count, seg)

    stream = StreamSegmenter(show)
    for end in range(args.chunk_size, len(text) + args.chunk_size, args.chunk_size):
        is_final = end >= len(text)
        stream.feed(text[:end], is_final=is_final)
        if args.delay and not is_final:
            time.sleep(args.delay)
    print(f"Streamed {len(text)} chars into {count} segments")


async def _narrate(settings: Settings, text: str) -> int:
    session = NarrationSession(settings)
    try:
        segments = session.on_message_ready(text)
        if segments:
            print(f"Narrating {len(segments)} segments...")
            await session.wait_until_done()
        return len(segments)
    finally:
        await session.aclose()


def cmd_narrate(args):
    """Synthesize and play a marked text file."""
    _check_ffmpeg()
    text = _read_text(args.file)
    settings = load_settings(args.config)
    settings.update(enabled=True)
    if args.max_preload is not None:
        settings.update(max_preload=args.max_preload)

    try:
        played = asyncio.run(_narrate(settings, text))
    except KeyboardInterrupt:
        print("\nStopped.")
        return
    if not played:
        print("Nothing to narrate.")


def cmd_instructions(args):
    """Print the prompt instructions for the configured voices."""
    settings = load_settings(args.config)
    print(build_instructions(settings.voices))


def cmd_voices(args):
    """List configured voices and their samples."""
    settings = load_settings(args.config)
    print("Voices:")
    for voice in settings.voices:
        print(f"  {voice.name} ({voice.id})")
        for name, audio in voice.variants.items():
            if audio.data:
                duration = f"{audio.duration:.1f}s" if audio.duration is not None else "?"
                print(f"    {name}.mp3  {audio.file_name or ''} [{duration}]")
            else:
                print(f"    {name}.mp3  (no sample)")


def cmd_add_sample(args):
    """Store an audio sample as a voice variant, creating the voice if needed."""
    _check_ffmpeg()
    if not os.path.exists(args.audio):
        print(f"Error: File not found: {args.audio}", file=sys.stderr)
        raise SystemExit(1)

    settings = load_settings(args.config)
    library = settings.voices
    if args.name == DEFAULT_CHARACTER:
        voice = library.get(NARRATOR_VOICE_ID)
    else:
        voice = library.find_by_name(args.name) or library.add_voice(args.name)

    variant = args.variant.removesuffix(".mp3")
    library.set_variant(voice.id, variant, load_sample(args.audio))
    settings.notify_changed({"voices"})
    save_settings(settings, args.config)
    print(f"Added {variant}.mp3 to {voice.name}")


def _coerce(field_type, value: str):
    """Convert a command-line string to the setting's declared type."""
    if field_type is bool:
        lowered = value.lower()
        if lowered in ("on", "true", "yes", "1"):
            return True
        if lowered in ("off", "false", "no", "0"):
            return False
        raise ValueError(f"expected on/off, got {value!r}")
    if field_type is int:
        return int(value)
    if field_type is float:
        return float(value)
    return value


def cmd_set(args):
    """Update one setting."""
    settings = load_settings(args.config)
    types = {f.name: f.type for f in fields(Settings) if f.name != "voices"}
    key = args.key.replace("-", "_")
    if key not in types:
        print(f"Error: Unknown setting: {args.key}", file=sys.stderr)
        print(f"Valid settings: {', '.join(sorted(types))}", file=sys.stderr)
        raise SystemExit(1)

    try:
        value = _coerce(types[key], args.value)
        settings.update(**{key: value})
    except (ValueError, ConfigError) as e:
        print(f"Error: Invalid value for {args.key}: {e}", file=sys.stderr)
        raise SystemExit(1)

    save_settings(settings, args.config)
    shown = "***" if key == "api_key" else value
    print(f"Updated: {key} → {shown}")


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="voicemark",
        description="Voicemark — narrate marked-up AI stories with per-character voices",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--config", default=SETTINGS_FILE, help="Settings file (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show diagnostic logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # markers
    markers_parser = subparsers.add_parser("markers", help="List markers in a text file")
    markers_parser.add_argument("file", help="Path to the marked text file")
    markers_parser.set_defaults(func=cmd_markers)

    # segments
    segments_parser = subparsers.add_parser("segments", help="Show the segments a text file splits into")
    segments_parser.add_argument("file", help="Path to the marked text file")
    segments_parser.add_argument("--json", action="store_true", help="Print segments as JSON")
    segments_parser.set_defaults(func=cmd_segments)

    # stream
    stream_parser = subparsers.add_parser("stream", help="Segment a text file as if it were streamed")
    stream_parser.add_argument("file", help="Path to the marked text file")
    stream_parser.add_argument("--chunk-size", type=int, default=20, help="Characters per update")
    stream_parser.add_argument("--delay", type=float, default=0.0, help="Seconds between updates")
    stream_parser.set_defaults(func=cmd_stream)

    # narrate
    narrate_parser = subparsers.add_parser("narrate", help="Synthesize and play a text file")
    narrate_parser.add_argument("file", help="Path to the marked text file")
    narrate_parser.add_argument("--max-preload", type=int, help="Segments to fetch ahead of playback")
    narrate_parser.set_defaults(func=cmd_narrate)

    # instructions
    instructions_parser = subparsers.add_parser("instructions", help="Print the prompt instructions")
    instructions_parser.set_defaults(func=cmd_instructions)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List configured voices")
    voices_parser.set_defaults(func=cmd_voices)

    # add-sample
    sample_parser = subparsers.add_parser("add-sample", help="Add a voice sample")
    sample_parser.add_argument("name", help="Character name (Narrator for the narrator)")
    sample_parser.add_argument("variant", help="Variant name, e.g. default or angry.mp3")
    sample_parser.add_argument("audio", help="Path to the audio sample")
    sample_parser.set_defaults(func=cmd_add_sample)

    # set
    set_parser = subparsers.add_parser("set", help="Update a setting")
    set_parser.add_argument("key", help="Setting name, e.g. max-preload")
    set_parser.add_argument("value", help="New value")
    set_parser.set_defaults(func=cmd_set)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
