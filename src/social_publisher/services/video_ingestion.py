"""Video upload storage, probing and thumbnail generation.

Uploaded files are stored under ``<MEDIA_ROOT>/social-media/videos`` with a
random name. ffprobe/ffmpeg are used as opaque external tools: when they are
missing or fail, ingestion degrades to "no metadata, no thumbnail" instead of
failing the upload.
"""

import json
import mimetypes
import shutil
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, BinaryIO
from uuid import uuid4

from social_publisher.config import get_settings
from social_publisher.domain.errors import VideoValidationError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

VIDEO_DIR = Path("social-media") / "videos"
THUMBNAIL_DIR = VIDEO_DIR / "thumbnails"
COPY_CHUNK_SIZE = 1024 * 1024

# Thumbnail timestamp: 2 seconds in, or 10% of the duration for short clips
THUMBNAIL_MAX_OFFSET = 2.0
THUMBNAIL_FRACTION = 0.1


@dataclass
class StoredVideo:
    """A video written to media storage."""

    path: str  # Relative to MEDIA_ROOT
    filename: str
    size: int
    mime_type: str
    url: str


@dataclass
class VideoMetadata:
    """Probe result. Every field is optional because probing is best-effort."""

    duration: float | None = None
    width: int | None = None
    height: int | None = None
    codec: str | None = None
    frame_rate: float | None = None
    bitrate: int | None = None
    format: str | None = None
    size: int | None = None
    audio_codec: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def media_root() -> Path:
    return Path(get_settings().media_root)


def relative_media_path(path: str | Path, directory: Path | None = None) -> str:
    """Normalise a client-supplied media path and confine it to media storage.

    Args:
        path: Path relative to MEDIA_ROOT.
        directory: Optional directory under MEDIA_ROOT the file must sit in.

    Returns:
        The normalised path relative to MEDIA_ROOT.

    Raises:
        VideoValidationError: If the path is absolute or resolves outside the allowed directory.
    """
    root = media_root().resolve()
    base = (root / directory).resolve() if directory is not None else root
    if Path(path).is_absolute():
        raise VideoValidationError(f"Invalid media path: {path}")

    target = (root / path).resolve()
    if target == base or not target.is_relative_to(base):
        raise VideoValidationError(f"Invalid media path: {path}")
    return target.relative_to(root).as_posix()


def absolute_path(relative: str | Path, directory: Path | None = None) -> Path:
    """Resolve a stored relative media path.

    Raises:
        VideoValidationError: If the path escapes MEDIA_ROOT (or ``directory`` under it).
    """
    return media_root().resolve() / relative_media_path(relative, directory)


def media_url(relative: str | Path) -> str:
    """URL under which a stored file is served by this API."""
    return f"{get_settings().media_base_url.rstrip('/')}/{Path(relative).as_posix()}"


def public_media_url(relative: str | Path) -> str | None:
    """Publicly reachable URL of a stored file, if PUBLIC_MEDIA_BASE_URL is configured."""
    base = get_settings().public_media_base_url
    if not base:
        return None
    return f"{base.rstrip('/')}/{Path(relative).as_posix()}"


def ingest(filename: str, stream: BinaryIO, content_type: str | None = None) -> StoredVideo:
    """Store an uploaded video under a collision-resistant name.

    Args:
        filename: Client-supplied file name (only its extension is kept).
        stream: Readable binary stream of the upload.
        content_type: Client-supplied MIME type.

    Returns:
        StoredVideo describing the written file.

    Raises:
        VideoValidationError: If the extension is not allowed or the file is empty or too large.
    """
    settings = get_settings()
    extension = Path(filename).suffix.lower().lstrip(".")
    if extension not in settings.video_allowed_extensions:
        raise VideoValidationError(
            f"Unsupported video type '.{extension}'. "
            f"Allowed: {', '.join(settings.video_allowed_extensions)}"
        )

    max_bytes = settings.video_max_size_mb * 1024 * 1024
    relative = VIDEO_DIR / f"{uuid4().hex}.{extension}"
    target = absolute_path(relative)
    target.parent.mkdir(parents=True, exist_ok=True)

    size = 0
    with open(target, "wb") as out:
        while chunk := stream.read(COPY_CHUNK_SIZE):
            size += len(chunk)
            if size > max_bytes:
                break
            out.write(chunk)

    if size > max_bytes or size == 0:
        target.unlink(missing_ok=True)
        if size == 0:
            raise VideoValidationError("Uploaded video is empty")
        raise VideoValidationError(
            f"Video exceeds the maximum size of {settings.video_max_size_mb} MB"
        )

    mime_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

    logger.info("video_stored", path=str(relative), size=size, mime_type=mime_type)
    return StoredVideo(
        path=relative.as_posix(),
        filename=filename,
        size=size,
        mime_type=mime_type,
        url=media_url(relative),
    )


def _parse_frame_rate(value: str | None) -> float | None:
    """Parse an ffprobe rational such as ``30000/1001``."""
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            return round(float(num) / float(den), 3) if float(den) else None
        return float(value)
    except ValueError:
        return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def extract_metadata(path: Path) -> VideoMetadata:
    """Probe a video with ffprobe.

    Never raises: a missing binary, a non-zero exit or unparseable output is
    logged and yields an empty ``VideoMetadata``.
    """
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=settings.ffmpeg_timeout,
        )
        probe = json.loads(result.stdout)
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.warning("video_probe_failed", path=str(path), error=str(e))
        return VideoMetadata()
    except json.JSONDecodeError as e:
        logger.warning("video_probe_unparseable", path=str(path), error=str(e))
        return VideoMetadata()

    streams = probe.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), {})
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})
    fmt = probe.get("format") or {}

    metadata = VideoMetadata(
        duration=_to_float(fmt.get("duration") or video.get("duration")),
        width=_to_int(video.get("width")),
        height=_to_int(video.get("height")),
        codec=video.get("codec_name"),
        frame_rate=_parse_frame_rate(video.get("r_frame_rate") or video.get("avg_frame_rate")),
        bitrate=_to_int(fmt.get("bit_rate") or video.get("bit_rate")),
        format=fmt.get("format_name"),
        size=_to_int(fmt.get("size")),
        audio_codec=audio.get("codec_name"),
    )
    logger.debug("video_probed", path=str(path), **metadata.to_dict())
    return metadata


def thumbnail_offset(duration: float) -> float:
    """Seek position for the thumbnail frame."""
    return min(THUMBNAIL_MAX_OFFSET, duration * THUMBNAIL_FRACTION)


def generate_thumbnail(path: Path, duration: float | None) -> str | None:
    """Grab a JPEG frame from the video.

    Only attempted when probing produced a duration.

    Returns:
        Thumbnail path relative to MEDIA_ROOT, or None if it could not be made.
    """
    if not duration:
        return None

    settings = get_settings()
    relative = THUMBNAIL_DIR / f"{path.stem}.jpg"
    output = absolute_path(relative)
    output.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss",
        f"{thumbnail_offset(duration):.3f}",
        "-i",
        str(path),
        "-vframes",
        "1",
        "-q:v",
        "2",
        str(output),
    ]
    try:
        subprocess.run(cmd, capture_output=True, check=True, timeout=settings.ffmpeg_timeout)
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.warning("thumbnail_generation_failed", path=str(path), error=str(e))
        return None

    if not output.exists():
        return None

    logger.info("thumbnail_generated", video=str(path), thumbnail=str(relative))
    return relative.as_posix()


def store_thumbnail(filename: str, stream: BinaryIO) -> str:
    """Store a user-supplied thumbnail image; returns its relative path."""
    extension = Path(filename).suffix.lower() or ".jpg"
    relative = THUMBNAIL_DIR / f"{uuid4().hex}{extension}"
    target = absolute_path(relative)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as out:
        shutil.copyfileobj(stream, out)
    return relative.as_posix()


def delete_files(*paths: str | None) -> int:
    """Remove stored media files; missing files and paths outside media storage are skipped.

    Returns:
        Number of files actually removed.
    """
    removed = 0
    for relative in paths:
        if not relative:
            continue
        try:
            target = absolute_path(relative)
        except VideoValidationError:
            logger.warning("media_delete_refused", path=str(relative))
            continue
        try:
            target.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("media_delete_failed", path=str(target), error=str(e))
    return removed
