import logging
import math
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from audio_analyzer.analysis import run_full_analysis
from audio_analyzer.decoding import open_reader
from audio_analyzer.dsp_engine.spectrum import DEFAULT_SMOOTHING, SMOOTHING_PRESETS
from audio_analyzer.models import AnalysisResponse, HealthResponse, SmoothingPresetsResponse
from audio_analyzer.settings import configure_logging, load_settings

logger = logging.getLogger("audio_analyzer.api")

settings = load_settings()
configure_logging(settings)

app = FastAPI(title="Audio Analyzer")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health():
    """Static liveness payload; does not touch the analysis stack."""

    return {"status": "ok"}


@app.get("/smoothing-presets", response_model=SmoothingPresetsResponse)
async def smoothing_presets():
    return {"presets": dict(SMOOTHING_PRESETS), "default": DEFAULT_SMOOTHING}


def _spool_upload(file: UploadFile, work_dir: Path) -> Path:
    suffix = Path(file.filename or "").suffix or ".wav"
    work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(prefix="upload_", suffix=suffix, dir=work_dir, delete=False) as tmp:
        shutil.copyfileobj(file.file, tmp)
        return Path(tmp.name)


@app.post("/analyze", response_model=AnalysisResponse)
def analyze(
    file: UploadFile = File(...),
    smoothing: Optional[float] = Form(DEFAULT_SMOOTHING),
):
    """Analyse one uploaded track.

    Returns tempo, key, loudness metrics, per-stage timings and the
    smoothed mid/side/stereo spectrum. The upload only lives on disk for
    the duration of the request.
    """

    if smoothing is not None and not math.isfinite(smoothing):
        raise HTTPException(status_code=400, detail="smoothing must be a finite number")
    factor = DEFAULT_SMOOTHING if smoothing is None else max(float(smoothing), 0.0)
    spooled: Optional[Path] = None
    try:
        try:
            spooled = _spool_upload(file, settings.work_dir)
        except OSError as exc:
            logger.exception("[API] Could not spool upload %s", file.filename)
            raise HTTPException(status_code=500, detail=f"Failed to store upload: {exc}") from exc

        reader = open_reader(spooled)
        if reader is None:
            raise HTTPException(status_code=400, detail="Failed to read audio")
        reader.close()

        data, curves = run_full_analysis(spooled, smoothing_factor=factor, settings=settings)
    finally:
        file.file.close()
        if spooled is not None:
            spooled.unlink(missing_ok=True)

    response = data.to_dict()
    response["filename"] = file.filename
    response["spectrum"] = curves.to_dict() if curves is not None else None
    return response
