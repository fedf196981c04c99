"""
Job Scheduler
Persisted status state machines for transcription jobs and agent generation.

Transcription: idle -> processing -> completed | failed. Only idle and failed
may move to processing, and the move is a single conditional UPDATE committed
before the background task is dispatched. Terminal writes are conditional on
the job id still owning the record, so a superseded job can never overwrite a
newer state.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
import uuid
import logging

from app.config import get_settings
from app.exceptions import InvalidStateTransition, JobAlreadyRunning, PipelineError
from app.models.agent import Agent, AgentStatus
from app.models.transcription import Transcription
from app.models.video import (
    SCHEDULABLE_STATUSES,
    TranscriptSource,
    TranscriptionStatus,
    Video,
)
from app.services import store
from app.services.audio import WAV_HEADER_BYTES, AudioExtractor, compress_audio, estimate_compressed_size
from app.services.media_engine import MediaEngine
from app.services.storage import StorageService
from app.services.transcription_planner import (
    BYTES_PER_MB,
    TranscriptionTier,
    ensure_supported,
    plan_transcription,
)
from app.services.transcription_service import Transcriber

logger = logging.getLogger(__name__)
settings = get_settings()

Dispatcher = Callable[[str, str], None]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def stale_cutoff() -> str:
    """Start time before which an in-flight job counts as abandoned"""
    return (datetime.now(timezone.utc) - timedelta(minutes=settings.STALE_JOB_MINUTES)).isoformat()


def _celery_dispatch(video_id: str, job_id: str):
    from app.workers.tasks import transcribe_video_task
    transcribe_video_task.delay(video_id, job_id)


def _error_message(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return error.message
    return str(error) or error.__class__.__name__


def _finish_transcription(db: Session, video_id: str, job_id: str, **fields) -> bool:
    """Conditional terminal/progress write. Returns False if the job was superseded"""
    updated = (
        db.query(Video)
        .filter(
            Video.id == video_id,
            Video.transcription_job_id == job_id,
            Video.transcription_status == TranscriptionStatus.PROCESSING.value,
        )
        .update(fields, synchronize_session=False)
    )
    db.commit()
    if not updated:
        logger.warning(f"Transcription job {job_id} for {video_id} no longer owns the video, write skipped")
    return bool(updated)


def fail_transcription(db: Session, video_id: str, job_id: str, error: BaseException) -> bool:
    """Terminal failure for a job that could not even start"""
    return _finish_transcription(
        db, video_id, job_id,
        transcription_status=TranscriptionStatus.FAILED.value,
        transcription_error=_error_message(error),
        transcription_progress=None,
    )


class TranscriptionScheduler:
    """Moves a video into processing and hands the work to a background task"""

    def __init__(self, dispatch: Optional[Dispatcher] = None):
        self.dispatch = dispatch or _celery_dispatch

    def schedule(self, db: Session, user_id: str, video_id: str) -> Video:
        video = store.get(db, Video, video_id, user_id)

        job_id = str(uuid.uuid4())
        claimed = (
            db.query(Video)
            .filter(
                Video.id == video_id,
                Video.user_id == user_id,
                or_(
                    Video.transcription_status.in_(SCHEDULABLE_STATUSES),
                    and_(
                        Video.transcription_status == TranscriptionStatus.PROCESSING.value,
                        Video.transcription_started_at < stale_cutoff(),
                    ),
                ),
            )
            .update(
                {
                    Video.transcription_status: TranscriptionStatus.PROCESSING.value,
                    Video.transcription_job_id: job_id,
                    Video.transcription_started_at: utc_now(),
                    Video.transcription_progress: "Queued for transcription",
                    Video.transcription_error: None,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(video)

        if not claimed:
            if video.transcription_status == TranscriptionStatus.PROCESSING.value:
                raise JobAlreadyRunning("Transcription already in progress for this video")
            raise InvalidStateTransition(
                f"Cannot transcribe a video in status '{video.transcription_status}'. "
                "Clear the existing transcript first."
            )

        logger.info(f"Scheduled transcription job {job_id} for video {video_id}")
        try:
            self.dispatch(video_id, job_id)
        except Exception as e:
            logger.error(f"Failed to dispatch transcription job {job_id}: {e}")
            fail_transcription(db, video_id, job_id, RuntimeError(f"Could not queue transcription: {e}"))
            db.refresh(video)
            raise
        return video


class TranscriptionJobRunner:
    """
    Body of the background transcription job.
    Plans the tier, extracts audio when needed, transcribes, and writes
    exactly one terminal outcome.
    """

    def __init__(self, engine: MediaEngine, transcriber: Transcriber, storage: StorageService):
        self.engine = engine
        self.transcriber = transcriber
        self.storage = storage

    def _progress(self, db: Session, video_id: str, job_id: str, message: str) -> bool:
        logger.info(f"[{video_id}] {message}")
        return _finish_transcription(db, video_id, job_id, transcription_progress=message)

    def _compress(self, db: Session, video: Video, job_id: str, data: bytes, file_name: str, mime_type: str):
        """Downmix to 16kHz mono WAV, but only when the result is smaller than data"""
        if not video.duration_seconds:
            logger.warning(f"[{video.id}] Duration unknown, sending extracted audio uncompressed")
            return data, file_name, mime_type

        estimate = WAV_HEADER_BYTES + estimate_compressed_size(
            video.duration_seconds, settings.AUDIO_COMPRESS_SAMPLE_RATE, 1
        )
        if estimate >= len(data):
            logger.info(
                f"[{video.id}] 16kHz WAV would be {estimate / BYTES_PER_MB:.1f}MB, "
                f"keeping {len(data) / BYTES_PER_MB:.1f}MB extracted audio"
            )
            return data, file_name, mime_type

        self._progress(db, video.id, job_id, "Compressing audio...")
        compressed = compress_audio(data)
        if len(compressed) >= len(data):
            return data, file_name, mime_type
        return compressed, f"{Path(file_name).stem}.wav", "audio/wav"

    def _transcribe(self, db: Session, video: Video, job_id: str) -> str:
        plan = ensure_supported(plan_transcription(video.file_size))
        self._progress(db, video.id, job_id, plan.reason)

        path = self.storage.get_path(video.storage_handle)
        if plan.tier == TranscriptionTier.EXTRACT_AUDIO:
            self._progress(db, video.id, job_id, "Extracting audio from video...")
            audio = AudioExtractor(self.engine).extract(str(path))
            try:
                data, file_name, mime_type = audio.read(), audio.file_name, audio.mime_type
            finally:
                audio.path.unlink(missing_ok=True)
            if len(data) >= settings.TRANSCRIPTION_DIRECT_MAX_MB * BYTES_PER_MB:
                data, file_name, mime_type = self._compress(db, video, job_id, data, file_name, mime_type)
        else:
            data = path.read_bytes()
            file_name, mime_type = video.original_filename or path.name, video.mime_type

        self._progress(db, video.id, job_id, "Transcribing audio...")
        return self.transcriber.transcribe(data, file_name, mime_type)

    def run(self, db: Session, video_id: str, job_id: str) -> Optional[str]:
        """
        Returns: the terminal status written, or None if the job no longer
        owns the video
        """
        video = db.query(Video).filter(Video.id == video_id).first()
        if (
            video is None
            or video.transcription_job_id != job_id
            or video.transcription_status != TranscriptionStatus.PROCESSING.value
        ):
            logger.warning(f"Transcription job {job_id} for {video_id} is not current, skipping")
            return None

        try:
            text = self._transcribe(db, video, job_id)
        except Exception as e:
            message = _error_message(e)
            logger.error(f"Transcription job {job_id} for {video_id} failed: {message}")
            written = _finish_transcription(
                db, video_id, job_id,
                transcription_status=TranscriptionStatus.FAILED.value,
                transcription_error=message,
                transcription_progress=None,
            )
            return TranscriptionStatus.FAILED.value if written else None

        written = _finish_transcription(
            db, video_id, job_id,
            transcript=text,
            transcript_source=TranscriptSource.SERVICE.value,
            transcription_status=TranscriptionStatus.COMPLETED.value,
            transcription_error=None,
            transcription_progress=None,
        )
        if written:
            logger.info(f"Transcription job {job_id} completed for {video_id}: {len(text)} characters")
        return TranscriptionStatus.COMPLETED.value if written else None


def _reset_agents(db: Session, video_id: str) -> List[Agent]:
    agents = db.query(Agent).filter(Agent.video_id == video_id).all()
    for agent in agents:
        agent.draft = ""
        agent.status = AgentStatus.IDLE.value
        agent.generation_started_at = None
    return agents


def upload_manual_transcript(
    db: Session,
    user_id: str,
    video_id: str,
    text: str,
    format: str = "txt",
    file_name: Optional[str] = None,
    segments: Optional[list] = None,
    duration: Optional[float] = None,
) -> int:
    """
    Override the transcript with user-supplied text.
    Every agent of the video is reset to an empty idle draft.
    Returns: number of affected agents
    """
    video = store.get(db, Video, video_id, user_id)
    text = (text or "").strip()
    if not text:
        raise InvalidStateTransition("Manual transcript is empty")

    video.transcript = text
    video.transcript_source = TranscriptSource.MANUAL.value
    video.transcription_status = TranscriptionStatus.COMPLETED.value
    video.transcription_error = None
    video.transcription_progress = None
    video.transcription_job_id = None

    db.query(Transcription).filter(Transcription.video_id == video_id).delete(synchronize_session=False)
    db.add(Transcription(
        user_id=user_id,
        project_id=video.project_id,
        video_id=video_id,
        file_name=file_name or f"transcript.{format}",
        format=format,
        full_text=text,
        segments=segments,
        word_count=len(text.split()),
        duration=duration,
    ))

    agents = _reset_agents(db, video_id)
    db.commit()

    logger.info(f"Manual transcript stored for {video_id}, reset {len(agents)} agents")
    return len(agents)


def reset_transcription(db: Session, user_id: str, video_id: str) -> Video:
    """Drop the transcript and return the video to idle"""
    video = store.get(db, Video, video_id, user_id)
    video.transcript = None
    video.transcript_source = None
    video.transcription_status = TranscriptionStatus.IDLE.value
    video.transcription_error = None
    video.transcription_progress = None
    video.transcription_job_id = None
    video.transcription_started_at = None
    db.query(Transcription).filter(Transcription.video_id == video_id).delete(synchronize_session=False)
    db.commit()
    db.refresh(video)
    logger.info(f"Transcription cleared for {video_id}")
    return video


@asynccontextmanager
async def agent_generation(db: Session, agent: Agent):
    """
    Hold an agent in generating for the duration of the block.

    Changes the caller makes to the agent inside the block are committed
    together with the move to ready. Any exception rolls them back, commits
    error (the prior draft is kept) and propagates.
    """
    claimed = (
        db.query(Agent)
        .filter(
            Agent.id == agent.id,
            or_(
                Agent.status != AgentStatus.GENERATING.value,
                Agent.generation_started_at.is_(None),
                Agent.generation_started_at < stale_cutoff(),
            ),
        )
        .update(
            {Agent.status: AgentStatus.GENERATING.value, Agent.generation_started_at: utc_now()},
            synchronize_session=False,
        )
    )
    db.commit()
    if not claimed:
        raise JobAlreadyRunning("Generation already in progress for this agent")
    db.refresh(agent)

    try:
        yield agent
    except BaseException:
        db.rollback()
        db.query(Agent).filter(Agent.id == agent.id).update(
            {Agent.status: AgentStatus.ERROR.value, Agent.generation_started_at: None},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(agent)
        raise
    else:
        agent.status = AgentStatus.READY.value
        agent.generation_started_at = None
        db.commit()
        db.refresh(agent)
