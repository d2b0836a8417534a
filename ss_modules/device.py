"""
Screenshot Stitcher Device Module

Ports the capture pipeline consumes. The stitcher never talks to a browser
directly; a host adapter (see browser_bridge.py) or a test fake implements
PageController, and the results leave through ArtifactSink and Notifier.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Tuple

from .models import FinalArtifact, PageMetrics

logger = logging.getLogger(__name__)


class PageController(ABC):
    """
    Scroll, measure and capture primitives of one host page.

    All methods are coroutines so async hosts can implement them directly.
    The orchestrator awaits each call before issuing the next one.
    """

    @abstractmethod
    async def capture_visible_area(self, format: str, quality: int) -> bytes:
        """
        Snapshot the current viewport.

        Returns:
            Encoded image bytes (PNG or JPEG)

        Raises:
            CaptureTransportError: host failed to deliver the capture
        """

    @abstractmethod
    async def scroll_to(self, x: int, y: int) -> None:
        """Scroll the document so (x, y) is the viewport's top-left corner"""

    @abstractmethod
    async def get_scroll_position(self) -> Tuple[int, int]:
        """Current (scroll_x, scroll_y)"""

    @abstractmethod
    async def measure_page(self) -> PageMetrics:
        """Raw document/viewport size candidates"""

    async def inject_capture_styles(self, hide_scrollbars: bool, freeze_animations: bool) -> None:
        """Apply temporary styling for a stable capture; no-op by default"""

    async def remove_capture_styles(self) -> None:
        """Undo inject_capture_styles; must be safe to call repeatedly"""


class ArtifactSink(ABC):
    """Receives finished artifacts (download, clipboard, disk...)"""

    @abstractmethod
    def persist(self, artifacts: List[FinalArtifact]) -> List[str]:
        """Store artifacts, returning a location per artifact"""


class FileArtifactSink(ArtifactSink):
    """Writes artifacts into a directory, one file each"""

    def __init__(self, output_dir: str = "data/screenshots"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[FileArtifactSink] Initialized with storage: {self.output_dir}")

    def persist(self, artifacts: List[FinalArtifact]) -> List[str]:
        paths = []
        for artifact in artifacts:
            path = self.output_dir / artifact.filename
            with open(path, 'wb') as f:
                f.write(artifact.payload)
            logger.debug(f"[FileArtifactSink] Wrote {path} ({len(artifact.payload)} bytes)")
            paths.append(str(path))
        return paths


class Notifier(ABC):
    """User-facing status messages (toasts in a UI, log lines headless)"""

    @abstractmethod
    def info(self, message: str) -> None:
        ...

    @abstractmethod
    def success(self, message: str) -> None:
        ...

    @abstractmethod
    def error(self, message: str) -> None:
        ...


class LoggingNotifier(Notifier):
    """Notifier that writes to the log"""

    def info(self, message: str) -> None:
        logger.info(f"[Notify] {message}")

    def success(self, message: str) -> None:
        logger.info(f"[Notify] ✅ {message}")

    def error(self, message: str) -> None:
        logger.error(f"[Notify] {message}")
