"""
Transcript file parsing (SRT, WebVTT, plain text, JSON) and validation
"""
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

from app.exceptions import TranscriptParseError

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_SECONDS = 5
LONG_SEGMENT_CHARS = 200
LARGE_TRANSCRIPT_CHARS = 1_000_000

_SRT_TIMING = re.compile(r"(\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2},\d{3})")
_VTT_TIMING = re.compile(r"((?:\d{2}:)?\d{2}:\d{2}\.\d{3})\s*-->\s*((?:\d{2}:)?\d{2}:\d{2}\.\d{3})")
_TXT_TIMESTAMP = re.compile(r"[\[(](\d{1,2}:\d{2}(?::\d{2})?)[\])]\s*(.*)")


@dataclass
class TranscriptSegment:
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


@dataclass
class ParsedTranscript:
    segments: List[TranscriptSegment]
    format: str

    @property
    def full_text(self) -> str:
        return " ".join(s.text for s in self.segments if s.text)

    @property
    def duration(self) -> Optional[float]:
        return self.segments[-1].end if self.segments else None


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _timestamp_to_seconds(value: str) -> float:
    parts = value.replace(",", ".").split(":")
    seconds = 0.0
    for part in parts:
        seconds = seconds * 60 + float(part)
    return seconds


def format_time(seconds: float) -> str:
    h, rem = divmod(int(seconds), 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}" if h else f"{m}:{s:02d}"


def parse_srt(content: str) -> ParsedTranscript:
    segments = []
    for block in re.split(r"\n\s*\n", content.strip().replace("\r\n", "\n")):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue
        timing = _SRT_TIMING.search(lines[1])
        if not timing:
            continue
        segments.append(TranscriptSegment(
            start=_timestamp_to_seconds(timing.group(1)),
            end=_timestamp_to_seconds(timing.group(2)),
            text=" ".join(lines[2:]).strip(),
        ))
    return ParsedTranscript(segments=segments, format="srt")


def parse_vtt(content: str) -> ParsedTranscript:
    segments = []
    lines = content.replace("\r\n", "\n").split("\n")
    i = 0
    while i < len(lines):
        timing = _VTT_TIMING.search(lines[i])
        i += 1
        if not timing:
            continue
        text_lines = []
        while i < len(lines) and lines[i].strip() and "-->" not in lines[i]:
            text_lines.append(lines[i].strip())
            i += 1
        if text_lines:
            segments.append(TranscriptSegment(
                start=_timestamp_to_seconds(timing.group(1)),
                end=_timestamp_to_seconds(timing.group(2)),
                text=" ".join(text_lines),
            ))
    return ParsedTranscript(segments=segments, format="vtt")


def parse_txt(content: str) -> ParsedTranscript:
    """Plain text, optionally with [HH:MM:SS] or (MM:SS) line prefixes"""
    segments: List[TranscriptSegment] = []
    for raw in content.strip().split("\n"):
        line = raw.strip()
        if not line:
            continue
        stamped = _TXT_TIMESTAMP.match(line)
        if stamped:
            start = _timestamp_to_seconds(stamped.group(1))
            if segments:
                segments[-1].end = start
            segments.append(TranscriptSegment(start=start, end=start + DEFAULT_SEGMENT_SECONDS,
                                              text=stamped.group(2).strip()))
        elif segments:
            segments[-1].text = f"{segments[-1].text} {line}".strip()
        else:
            segments.append(TranscriptSegment(start=0, end=DEFAULT_SEGMENT_SECONDS, text=line))
    return ParsedTranscript(segments=segments, format="txt")


def _json_segments(data) -> List[TranscriptSegment]:
    if isinstance(data, list):
        segments = []
        for item in data:
            if not isinstance(item, dict):
                continue
            start = float(item.get("start") or item.get("startTime") or 0)
            end = float(item.get("end") or item.get("endTime") or start + DEFAULT_SEGMENT_SECONDS)
            text = item.get("text") or item.get("content") or item.get("transcript") or ""
            segments.append(TranscriptSegment(start=start, end=end, text=str(text).strip()))
        return segments
    if isinstance(data, dict):
        if "segments" in data:
            return _json_segments(data["segments"])
        if "transcript" in data:
            return [TranscriptSegment(start=0, end=60, text=str(data["transcript"]).strip())]
        if "text" in data:
            return [TranscriptSegment(start=0, end=60, text=str(data["text"]).strip())]
    return []


def parse_json(content: str) -> ParsedTranscript:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        raise TranscriptParseError("Invalid JSON format")
    return ParsedTranscript(segments=_json_segments(data), format="json")


def detect_format(file_name: Optional[str], content: str) -> str:
    extension = Path(file_name or "").suffix.lower().lstrip(".")
    if extension in ("srt", "txt", "json"):
        return extension
    if extension in ("vtt", "webvtt"):
        return "vtt"
    stripped = content.strip()
    if stripped.startswith("WEBVTT"):
        return "vtt"
    if "-->" in stripped:
        return "srt"
    if stripped.startswith("{") or stripped.startswith("["):
        return "json"
    return "txt"


_PARSERS = {"srt": parse_srt, "vtt": parse_vtt, "txt": parse_txt, "json": parse_json}


def parse_transcript(content: str, file_name: Optional[str] = None) -> ParsedTranscript:
    transcript_format = detect_format(file_name, content)
    try:
        parsed = _PARSERS[transcript_format](content)
    except TranscriptParseError as e:
        raise TranscriptParseError(f"Failed to parse {transcript_format.upper()}: {e.message}")
    logger.info(f"Parsed {transcript_format} transcript {file_name or ''}: {len(parsed.segments)} segments")
    return parsed


def validate_transcript(transcript: ParsedTranscript, video_duration: Optional[float] = None) -> ValidationResult:
    result = ValidationResult()

    if not transcript.segments or not transcript.full_text.strip():
        result.errors.append("Transcription file is empty")

    if len(transcript.full_text) > LARGE_TRANSCRIPT_CHARS:
        result.warnings.append("Transcription is very large (>1MB of text)")

    if video_duration and transcript.segments and transcript.segments[-1].end > video_duration + 5:
        result.warnings.append(f"Timestamps exceed video duration ({format_time(video_duration)})")

    for previous, current in zip(transcript.segments, transcript.segments[1:]):
        if current.start < previous.end:
            result.warnings.append("Some subtitles have overlapping timestamps")
            break

    long_segments = sum(1 for s in transcript.segments if len(s.text) > LONG_SEGMENT_CHARS)
    if long_segments:
        result.warnings.append(f"{long_segments} subtitle(s) are very long (>{LONG_SEGMENT_CHARS} chars)")

    return result
