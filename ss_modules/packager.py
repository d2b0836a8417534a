"""
Screenshot Stitcher Packager Module

Encodes composed canvases into downloadable artifacts and hands them to the
configured sink.
"""

import io
import logging
import time
from typing import List, Optional

from utils.error_handler import ErrorContext, PackagingError

from .device import ArtifactSink
from .models import CompositeCanvas, FinalArtifact

logger = logging.getLogger(__name__)

EXTENSIONS = {"png": "png", "jpeg": "jpg"}


class ResultPackager:
    """Turns canvases into FinalArtifacts"""

    def __init__(self, sink: Optional[ArtifactSink] = None, filename_prefix: str = "full-page-screenshot"):
        self.sink = sink
        self.filename_prefix = filename_prefix

    def package(
        self,
        canvases: List[CompositeCanvas],
        format: str = "png",
        quality: int = 100,
        timestamp_ms: Optional[int] = None,
    ) -> List[FinalArtifact]:
        """
        Encode one artifact per canvas, then release the canvas buffers.

        With more than one canvas every artifact gets a 1-based part_index
        (row-major, matching canvas order) and a -partN filename suffix.
        """
        if format not in EXTENSIONS:
            raise PackagingError(f"Unsupported format: {format}. Must be 'png' or 'jpeg'.")
        if not 1 <= quality <= 100:
            raise PackagingError(f"Quality must be between 1 and 100, got {quality}")

        timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        multipart = len(canvases) > 1
        artifacts = []

        try:
            for i, canvas in enumerate(canvases):
                if canvas.buffer is None:
                    raise PackagingError(f"Canvas {i} has no buffer (already released?)")

                part_index = i + 1 if multipart else None
                with ErrorContext(f"encoding canvas {i} as {format}", raise_as=PackagingError):
                    payload = self._encode(canvas, format, quality)

                artifacts.append(FinalArtifact(
                    format=format,
                    quality=quality,
                    payload=payload,
                    filename=self._filename(timestamp_ms, format, part_index),
                    width=canvas.width,
                    height=canvas.height,
                    part_index=part_index,
                ))
                logger.debug(
                    f"  Artifact {artifacts[-1].filename}: {canvas.width}x{canvas.height}, {len(payload)} bytes"
                )
        finally:
            for canvas in canvases:
                canvas.release()

        logger.info(f"[ResultPackager] Packaged {len(artifacts)} {format} artifact(s)")
        return artifacts

    def persist(self, artifacts: List[FinalArtifact]) -> List[str]:
        """
        Forward artifacts to the sink.

        Persistence is fire-and-forget from the run's point of view: a sink
        failure is logged and reported as no locations.
        """
        if self.sink is None or not artifacts:
            return []
        try:
            return self.sink.persist(artifacts)
        except Exception as e:
            logger.error(f"[ResultPackager] Artifact sink failed: {e}", exc_info=True)
            return []

    def _encode(self, canvas: CompositeCanvas, format: str, quality: int) -> bytes:
        buffer = io.BytesIO()
        if format == "jpeg":
            canvas.buffer.save(buffer, format='JPEG', quality=quality, optimize=True)
        else:
            canvas.buffer.save(buffer, format='PNG', optimize=False)
        return buffer.getvalue()

    def _filename(self, timestamp_ms: int, format: str, part_index: Optional[int]) -> str:
        suffix = f"-part{part_index}" if part_index is not None else ""
        return f"{self.filename_prefix}-{timestamp_ms}{suffix}.{EXTENSIONS[format]}"
