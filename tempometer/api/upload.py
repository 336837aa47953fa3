"""File upload endpoint for tempo analysis."""

import logging
import os
import tempfile

from fastapi import APIRouter, File, HTTPException, UploadFile

from tempometer.analysis.engine import BpmDetectorCoordinator
from tempometer.api.schemas import SummaryResponse, summary_to_response
from tempometer.audio.loader import load_audio
from tempometer.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac"}


def _analyze_path(path: str) -> SummaryResponse:
    audio, sr = load_audio(path, sr=settings.sample_rate)
    with BpmDetectorCoordinator() as coordinator:
        summary = coordinator.analyze_audio(audio, sr)
    return summary_to_response(summary)


@router.post("/analyze", response_model=SummaryResponse)
def analyze_file(file: UploadFile = File(...)):
    """Estimate the tempo of an uploaded recording."""
    ext = ""
    if file.filename and "." in file.filename:
        ext = "." + file.filename.rsplit(".", 1)[-1].lower()
    if ext and ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    content = file.file.read()
    if not content:
        raise HTTPException(400, "Empty file")
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    # librosa needs a path for some formats
    with tempfile.NamedTemporaryFile(suffix=ext, delete=False) as tmp:
        tmp.write(content)
        tmp_path = tmp.name
    try:
        return _analyze_path(tmp_path)
    except Exception as e:
        logger.exception(f"Analysis of {file.filename} failed: {e}")
        raise HTTPException(500, "Analysis failed")
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
