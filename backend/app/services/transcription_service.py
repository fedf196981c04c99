from faster_whisper import WhisperModel
from typing import Optional
import httpx
import io
import logging

from app.config import get_settings
from app.exceptions import TranscriptionError

logger = logging.getLogger(__name__)
settings = get_settings()

NO_SPEECH_MESSAGE = "No speech detected in the file. Please ensure your video/audio contains clear speech."


class Transcriber:
    """Speech-to-text backend: transcribe(data, file_name, mime_type) -> text"""
    name = "base"

    def transcribe(self, data: bytes, file_name: str, mime_type: Optional[str] = None) -> str:
        raise NotImplementedError

    @staticmethod
    def _require_speech(text: str) -> str:
        text = (text or "").strip()
        if not text:
            raise TranscriptionError(NO_SPEECH_MESSAGE)
        if len(text) < 50:
            logger.warning("Transcription seems too short, audio quality may be poor")
        return text


class WhisperTranscriber(Transcriber):
    """Local transcription with faster-whisper"""
    name = "whisper"

    def __init__(self, model_size: str = None, device: str = None, compute_type: str = None):
        self.model_size = model_size or settings.WHISPER_MODEL
        self.device = device or settings.WHISPER_DEVICE
        self.compute_type = compute_type or settings.WHISPER_COMPUTE_TYPE
        self._model: Optional[WhisperModel] = None

    @property
    def model(self) -> WhisperModel:
        # Loading the weights is slow, so defer it to the first job
        if self._model is None:
            self._model = WhisperModel(self.model_size, device=self.device, compute_type=self.compute_type)
            logger.info(f"Whisper {self.model_size} model loaded on {self.device}")
        return self._model

    def transcribe(self, data: bytes, file_name: str, mime_type: Optional[str] = None) -> str:
        logger.info(f"Transcribing {file_name} with Whisper ({len(data) / (1024 * 1024):.1f}MB)")
        try:
            segments, info = self.model.transcribe(io.BytesIO(data), beam_size=5)
            text = " ".join(segment.text.strip() for segment in segments)
        except Exception as e:
            logger.error(f"Whisper transcription failed for {file_name}: {e}")
            raise TranscriptionError(f"Transcription failed: {e}")

        logger.info(f"Detected language: {info.language} ({getattr(info, 'language_probability', 'N/A')})")
        return self._require_speech(text)


class ElevenLabsTranscriber(Transcriber):
    """Hosted transcription through the ElevenLabs speech-to-text API"""
    name = "elevenlabs"
    endpoint = "https://api.elevenlabs.io/v1/speech-to-text"

    def __init__(self, api_key: Optional[str] = None, model_id: str = None,
                 timeout: int = None, client: Optional[httpx.Client] = None):
        self.api_key = api_key or settings.ELEVENLABS_API_KEY
        if not self.api_key:
            raise TranscriptionError("ElevenLabs API key not configured. Set ELEVENLABS_API_KEY.")
        self.model_id = model_id or settings.ELEVENLABS_MODEL_ID
        self.client = client or httpx.Client(timeout=timeout or settings.ELEVENLABS_TIMEOUT)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        message = f"ElevenLabs API error ({response.status_code})"
        try:
            body = response.json()
            if isinstance(body, dict):
                detail = body.get("detail") or body.get("message")
                if isinstance(detail, dict):
                    detail = detail.get("message")
                message = detail or message
        except ValueError:
            message = response.text or message

        status = response.status_code
        if status == 400 and ("parsing the body" in message or "Invalid file format" in message):
            return "File format not supported. Please ensure your file is a valid video or audio file."
        if status == 401:
            return "ElevenLabs API authentication failed. Please check your API key."
        if status == 413:
            return "File is too large for the transcription service."
        if status == 429:
            return "Transcription rate limit exceeded. Please try again in a few moments."
        if status >= 500:
            return "Transcription service error. Please try again later."
        return message

    def transcribe(self, data: bytes, file_name: str, mime_type: Optional[str] = None) -> str:
        logger.info(f"Sending {file_name} to ElevenLabs ({len(data) / (1024 * 1024):.1f}MB)")
        try:
            response = self.client.post(
                self.endpoint,
                headers={"xi-api-key": self.api_key},
                data={"model_id": self.model_id},
                files={"file": (file_name, data, mime_type or "application/octet-stream")},
            )
        except httpx.TimeoutException:
            raise TranscriptionError("Transcription request timed out")
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Transcription request failed: network error {e}")

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"ElevenLabs API error {response.status_code}: {message}")
            raise TranscriptionError(message)

        body = response.json()
        if body.get("language_code"):
            logger.info(f"Detected language: {body['language_code']} ({body.get('language_probability', 'N/A')})")
        return self._require_speech(body.get("text", ""))


def get_transcriber(backend: Optional[str] = None) -> Transcriber:
    backend = (backend or settings.TRANSCRIPTION_BACKEND).lower()
    if backend == "whisper":
        return WhisperTranscriber()
    if backend == "elevenlabs":
        return ElevenLabsTranscriber()
    raise ValueError(f"Unknown transcription backend: {backend}")
