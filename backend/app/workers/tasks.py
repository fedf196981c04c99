from celery.signals import worker_process_init, worker_process_shutdown
from app.workers.celery_app import celery_app
from app.database import SessionLocal
from app.models.video import Video
from app.services.error_classifier import classify
from app.services.media_engine import MediaEngine
from app.services.storage import get_storage
from app.services.video_processor import MediaProbe, apply_metadata, store_frames
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Per worker process resources
engine = MediaEngine()
_transcriber = None


@worker_process_init.connect
def _acquire_engine(**kwargs):
    engine.acquire()


@worker_process_shutdown.connect
def _release_engine(**kwargs):
    engine.release()


def get_transcriber():
    global _transcriber
    if _transcriber is None:
        from app.services.transcription_service import get_transcriber as build_transcriber
        _transcriber = build_transcriber()
    return _transcriber


@celery_app.task(bind=True, max_retries=0)
def transcribe_video_task(self, video_id: str, job_id: str):
    """
    Run one transcription job. The job writes its own terminal state;
    nothing is retried.
    """
    from app.services.job_scheduler import TranscriptionJobRunner, fail_transcription

    db = SessionLocal()
    start_time = datetime.now(timezone.utc)
    try:
        try:
            # Lazily acquired when running outside a prefork worker (eager mode, solo pool)
            engine.acquire()
            transcriber = get_transcriber()
        except Exception as e:
            logger.error(f"Transcription task for {video_id} could not start: {e}")
            fail_transcription(db, video_id, job_id, e)
            return {"video_id": video_id, "job_id": job_id, "status": "failed"}

        runner = TranscriptionJobRunner(engine, transcriber, get_storage())
        status = runner.run(db, video_id, job_id)
        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"Transcription task for {video_id} finished with {status} in {duration:.2f}s")
        return {"video_id": video_id, "job_id": job_id, "status": status}
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=0)
def probe_video_task(self, video_id: str):
    """
    Extract technical metadata after upload. Failures are logged and
    absorbed; transcription state is never touched.
    """
    db = SessionLocal()
    try:
        video = db.query(Video).filter(Video.id == video_id).first()
        if not video or not video.storage_handle:
            logger.error(f"Video {video_id} not found or has no stored file")
            return None

        engine.acquire()
        storage = get_storage()
        path = str(storage.get_path(video.storage_handle))
        metadata = MediaProbe(engine).probe(
            path,
            video.file_size,
            video.mime_type,
            on_progress=lambda p: logger.debug(f"Probe {video_id}: {p:.0%}"),
        )
        apply_metadata(video, metadata)
        replaced = store_frames(video, metadata.thumbnails, storage) if metadata.thumbnails else []
        db.commit()
        for handle in replaced:
            storage.delete(handle)

        logger.info(f"Metadata stored for {video_id}: {metadata.duration}s, codec {metadata.codec}")
        return metadata.model_dump(exclude={"thumbnails"})
    except Exception as e:
        db.rollback()
        classified = classify(e)
        logger.error(f"Metadata extraction failed for {video_id} ({classified.kind}): {e}")
        return None
    finally:
        db.close()
