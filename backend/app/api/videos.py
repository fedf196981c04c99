from fastapi import APIRouter, UploadFile, File, Depends, Form
from sqlalchemy.orm import Session
from pathlib import Path
from typing import List, Optional
import magic
import logging

from app.api.deps import (
    get_content_agent,
    get_current_user,
    get_probe_dispatcher,
    get_scheduler,
    get_storage_service,
    video_response,
)
from app.config import get_settings
from app.database import get_db
from app.exceptions import FileTooLargeError, TranscriptParseError, UnsupportedFormatError, UploadError
from app.models.project import Project
from app.models.video import Video
from app.schemas import (
    TranscriptionPlanResponse,
    VideoMetadataUpdate,
    VideoResponse,
    VideoUpdate,
)
from app.services import store
from app.services.ai.content_agent import ContentAgent
from app.services.job_scheduler import (
    TranscriptionScheduler,
    reset_transcription,
    upload_manual_transcript,
)
from app.services.storage import StorageService
from app.services.transcript_parser import parse_transcript, validate_transcript
from app.services.transcription_planner import plan_transcription
from app.services.video_processor import apply_metadata

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter()

BYTES_PER_MB = 1024 * 1024


@router.post("/videos", response_model=VideoResponse, status_code=201)
async def upload_video(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    title: Optional[str] = Form(None),
    x: float = Form(0.0),
    y: float = Form(0.0),
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    dispatch_probe=Depends(get_probe_dispatcher),
):
    """
    Store an uploaded video and queue metadata extraction.
    The video starts with transcription status idle.
    """
    store.get(db, Project, project_id, user_id)

    if not file.filename:
        raise UploadError("Upload failed: no file provided")

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.ALLOWED_VIDEO_EXTENSIONS:
        raise UnsupportedFormatError(
            f"File format not supported: {file_ext or 'none'}. Allowed: {', '.join(settings.ALLOWED_VIDEO_EXTENSIONS)}"
        )

    # Sniff the MIME type from the first bytes rather than trusting the client
    head = await file.read(2048)
    await file.seek(0)
    mime_type = magic.from_buffer(head, mime=True)
    if mime_type not in settings.ALLOWED_MIME_TYPES:
        raise UnsupportedFormatError(f"File format not supported: {mime_type}")

    file.file.seek(0, 2)
    file_size = file.file.tell()
    file.file.seek(0)
    if file_size > settings.MAX_UPLOAD_SIZE_MB * BYTES_PER_MB:
        raise FileTooLargeError(file_size / BYTES_PER_MB, settings.MAX_UPLOAD_SIZE_MB)

    try:
        handle = storage.upload(file.file, file.filename)
    except OSError as e:
        raise UploadError(f"Upload failed: {e}")

    video = store.insert(db, Video(
        user_id=user_id,
        project_id=project_id,
        title=title or Path(file.filename).stem,
        original_filename=file.filename,
        mime_type=mime_type,
        file_size=file_size,
        storage_handle=handle,
        canvas_position={"x": x, "y": y},
    ))

    try:
        dispatch_probe(video.id)
    except Exception as e:
        # Metadata is optional, the upload itself succeeded
        logger.warning(f"Could not queue metadata extraction for {video.id}: {e}")

    logger.info(f"Video uploaded: {video.id} ({file_size} bytes)")
    return video_response(video, storage)


@router.get("/videos/{video_id}", response_model=VideoResponse)
def get_video(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    return video_response(store.get(db, Video, video_id, user_id), storage)


@router.get("/projects/{project_id}/videos", response_model=List[VideoResponse])
def list_project_videos(
    project_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    store.get(db, Project, project_id, user_id)
    videos = store.query_by_index(db, Video, user_id, project_id=project_id)
    return [video_response(v, storage) for v in videos]


@router.patch("/videos/{video_id}", response_model=VideoResponse)
def update_video(
    video_id: str,
    body: VideoUpdate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    video = store.get(db, Video, video_id, user_id)
    fields = {}
    if body.title is not None:
        fields["title"] = body.title
    if body.canvas_position is not None:
        fields["canvas_position"] = body.canvas_position.model_dump()
    return video_response(store.patch(db, video, **fields), storage)


@router.patch("/videos/{video_id}/metadata", response_model=VideoResponse)
def update_video_metadata(
    video_id: str,
    body: VideoMetadataUpdate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    video = store.get(db, Video, video_id, user_id)
    apply_metadata(video, body)
    db.commit()
    db.refresh(video)
    return video_response(video, storage)


@router.get("/videos/{video_id}/plan", response_model=TranscriptionPlanResponse)
def get_transcription_plan(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    video = store.get(db, Video, video_id, user_id)
    plan = plan_transcription(video.file_size or 0)
    return TranscriptionPlanResponse(
        tier=plan.tier.value,
        size_bytes=plan.size_bytes,
        size_mb=round(plan.size_mb, 2),
        reason=plan.reason,
    )


@router.post("/videos/{video_id}/transcribe", response_model=VideoResponse, status_code=202)
def transcribe_video(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    scheduler: TranscriptionScheduler = Depends(get_scheduler),
):
    """Start a background transcription. Poll GET /videos/{id} for the outcome"""
    video = scheduler.schedule(db, user_id, video_id)
    return video_response(video, storage)


@router.post("/videos/{video_id}/transcript")
async def upload_transcript(
    video_id: str,
    transcription: Optional[str] = Form(None),
    format: str = Form("txt"),
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    """
    Replace the transcript with pasted text or an uploaded SRT/VTT/TXT/JSON
    file. Every agent of the video is reset for regeneration.
    """
    video = store.get(db, Video, video_id, user_id)
    warnings: List[str] = []

    if file is not None and file.filename:
        if Path(file.filename).suffix.lower() not in settings.ALLOWED_TRANSCRIPT_EXTENSIONS:
            raise TranscriptParseError(f"Unsupported transcript file: {file.filename}")
        try:
            content = (await file.read()).decode("utf-8-sig")
        except UnicodeDecodeError:
            raise TranscriptParseError("Transcript file must be UTF-8 text")

        parsed = parse_transcript(content, file.filename)
        validation = validate_transcript(parsed, video.duration_seconds)
        if not validation.is_valid:
            raise TranscriptParseError("; ".join(validation.errors))
        warnings = validation.warnings

        affected = upload_manual_transcript(
            db, user_id, video_id, parsed.full_text,
            format=parsed.format,
            file_name=file.filename,
            segments=[s.to_dict() for s in parsed.segments],
            duration=parsed.duration,
        )
    elif transcription and transcription.strip():
        affected = upload_manual_transcript(db, user_id, video_id, transcription, format=format)
    else:
        raise TranscriptParseError("Transcription file is empty")

    db.refresh(video)
    return {
        "success": True,
        "affected_agents": affected,
        "warnings": warnings,
        "video": video_response(video, storage),
    }


@router.delete("/videos/{video_id}/transcript", response_model=VideoResponse)
def clear_transcript(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    return video_response(reset_transcription(db, user_id, video_id), storage)


@router.delete("/videos/{video_id}")
def delete_video(
    video_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    content_agent: ContentAgent = Depends(get_content_agent),
):
    """Delete a video, its agents and its stored file"""
    video = store.get(db, Video, video_id, user_id)
    handles = [video.storage_handle, *(video.frame_handles or [])] + [a.thumbnail_storage_handle for a in video.agents]
    agent_ids = [a.id for a in video.agents]
    store.delete(db, video)

    for handle in handles:
        storage.delete(handle)
    for agent_id in agent_ids:
        content_agent.locks.discard(agent_id)
    return {"message": "Video deleted successfully"}
