import ffmpeg
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Tuple
import logging

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class MediaEngine:
    """
    Owns the ffmpeg/ffprobe binaries and a scratch workspace.

    Acquired once at application (or worker) startup and released at
    shutdown. The probe and the audio extractor run every command through
    this object instead of reaching for global state.
    """

    def __init__(
        self,
        ffmpeg_binary: Optional[str] = None,
        ffprobe_binary: Optional[str] = None,
        scratch_root: Optional[Path] = None,
    ):
        self.ffmpeg_binary = ffmpeg_binary or settings.FFMPEG_BINARY
        self.ffprobe_binary = ffprobe_binary or settings.FFPROBE_BINARY
        self.scratch_root = Path(scratch_root or settings.TEMP_DIR)
        self.workspace: Optional[Path] = None

    @property
    def is_ready(self) -> bool:
        return self.workspace is not None

    def acquire(self) -> "MediaEngine":
        if self.workspace is None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            self.workspace = Path(tempfile.mkdtemp(prefix="media_", dir=str(self.scratch_root)))
            logger.info(f"Media engine ready (ffmpeg={self.ffmpeg_binary}, workspace={self.workspace})")
        return self

    def release(self):
        if self.workspace is not None:
            shutil.rmtree(self.workspace, ignore_errors=True)
            logger.info(f"Media engine released, removed {self.workspace}")
            self.workspace = None

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def _require(self):
        if self.workspace is None:
            raise RuntimeError("Media engine used before acquire()")

    def scratch_path(self, suffix: str) -> Path:
        """Unique file path inside the workspace"""
        self._require()
        return self.workspace / f"{uuid.uuid4().hex}{suffix}"

    def probe(self, path: str) -> dict:
        """ffprobe JSON for the container and its streams"""
        self._require()
        return ffmpeg.probe(path, cmd=self.ffprobe_binary)

    def run(self, stream) -> Tuple[bytes, bytes]:
        """Run an ffmpeg-python stream graph, returning (stdout, stderr)"""
        self._require()
        return stream.run(
            cmd=self.ffmpeg_binary,
            capture_stdout=True,
            capture_stderr=True,
            overwrite_output=True,
        )

    def run_async(self, stream):
        """Start an ffmpeg-python stream graph with stderr piped for live parsing"""
        self._require()
        return stream.run_async(cmd=self.ffmpeg_binary, pipe_stderr=True, quiet=True)
