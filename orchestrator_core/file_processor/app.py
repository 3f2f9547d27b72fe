"""
File Processing Service.

Standalone upload-and-metadata endpoint that the orchestrator supervises as
the ``fileProcessor`` service:

    GET  /health               - readiness probe used by the orchestrator
    POST /process              - multipart upload of up to 10 creative files
    POST /confirm-assets       - check that previously uploaded assets exist
    GET  /metadata/{filename}  - stat-based metadata of an uploaded file

Image/video analysis is intentionally not performed; files are classified by
MIME type only.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from orchestrator_core.config.settings import FileProcessorConfig

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp",
    ".mp4", ".mov", ".avi",
    ".psd", ".ai", ".sketch", ".fig",
    ".blend", ".obj", ".fbx", ".gltf",
})

CHUNK_SIZE = 1024 * 1024


class ConfirmAssetsRequest(BaseModel):
    assets: List[Dict[str, Any]] = Field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def classify(mimetype: Optional[str]) -> str:
    """Coarse file kind from its MIME type."""
    mimetype = mimetype or ""
    if mimetype.startswith("image/"):
        return "image"
    if mimetype.startswith("video/"):
        return "video"
    return "document"


def unique_name(original: str, field: str = "files") -> str:
    suffix = Path(original).suffix.lower()
    return f"{field}-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{suffix}"


def resolve_upload(upload_dir: Path, filename: str) -> Path:
    """Map a client-supplied filename into the upload directory, refusing traversal."""
    if not filename or Path(filename).name != filename or filename in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid filename")
    return upload_dir / filename


def create_app(config: Optional[FileProcessorConfig] = None) -> FastAPI:
    """Build the file processing application."""
    config = config or FileProcessorConfig()
    upload_dir = config.upload_dir

    app = FastAPI(title="File Processor", version="1.0.0")
    app.state.config = config
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "file-processor", "timestamp": _now()}

    def _check_extension(file: UploadFile) -> None:
        original = file.filename or ""
        suffix = Path(original).suffix.lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported file type: {suffix or original or 'unknown'}",
            )

    async def _store(file: UploadFile) -> Dict[str, Any]:
        original = file.filename or ""
        upload_dir.mkdir(parents=True, exist_ok=True)
        stored = upload_dir / unique_name(original)
        size = 0
        try:
            with open(stored, "wb") as out:
                while chunk := await file.read(CHUNK_SIZE):
                    size += len(chunk)
                    if size > config.max_file_size:
                        raise HTTPException(
                            status_code=413,
                            detail=f"{original} exceeds {config.max_file_size} bytes",
                        )
                    out.write(chunk)
        except HTTPException:
            stored.unlink(missing_ok=True)
            raise

        logger.info(f"[FileProcessor] Stored {original} as {stored.name} ({size} bytes)")
        return {
            "originalName": original,
            "filename": stored.name,
            "size": size,
            "mimetype": file.content_type,
            "path": str(stored),
            "type": classify(file.content_type),
            "processedAt": _now(),
        }

    @app.post("/process")
    async def process(files: List[UploadFile] = File(...)):
        if len(files) > config.max_files:
            raise HTTPException(
                status_code=400,
                detail=f"At most {config.max_files} files per request",
            )

        for f in files:
            _check_extension(f)

        processed: List[Dict[str, Any]] = []
        try:
            for f in files:
                processed.append(await _store(f))
        except HTTPException:
            # All-or-nothing: drop what this request already stored
            for entry in processed:
                (upload_dir / entry["filename"]).unlink(missing_ok=True)
            raise
        return {"success": True, "processedFiles": processed, "totalFiles": len(processed)}

    @app.post("/confirm-assets")
    async def confirm_assets(request: ConfirmAssetsRequest):
        confirmed = []
        for asset in request.assets:
            filename = str(asset.get("filename", ""))
            try:
                path = resolve_upload(upload_dir, filename)
                stats = path.stat()
            except (HTTPException, OSError):
                confirmed.append({**asset, "confirmed": False, "error": "File not found"})
                continue
            confirmed.append({
                **asset,
                "confirmed": True,
                "size": stats.st_size,
                "lastModified": datetime.fromtimestamp(stats.st_mtime, timezone.utc).isoformat(),
            })
        return {"success": True, "confirmedAssets": confirmed}

    @app.get("/metadata/{filename}")
    async def metadata(filename: str):
        path = resolve_upload(upload_dir, filename)
        try:
            stats = path.stat()
        except OSError:
            raise HTTPException(status_code=404, detail="File not found") from None
        return {
            "filename": filename,
            "size": stats.st_size,
            "created": datetime.fromtimestamp(stats.st_ctime, timezone.utc).isoformat(),
            "modified": datetime.fromtimestamp(stats.st_mtime, timezone.utc).isoformat(),
            "extension": path.suffix,
        }

    return app


def main():
    """Run the file processing service."""
    import uvicorn

    config = FileProcessorConfig()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info(f"📁 File Processor Service running on port {config.port}")
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")
