"""
Screenshot Stitcher Package

The stages of a full-page capture, leaf first. ScreenshotStitcher in
screenshot_stitcher.py wires them together.

Modules:
- models: Extents, tiles, run state and CaptureConfig
- device: Ports implemented by hosts (PageController, ArtifactSink, Notifier)
- dimensions: Document/viewport measurement
- planner: Tile planning
- capture: Scroll/settle/capture/retry orchestration
- compose: Canvas partitioning and tile composition
- packager: Artifact encoding and hand-off to the sink
"""

from .models import (
    CaptureAttempt,
    CaptureConfig,
    CapturedTile,
    CaptureRun,
    CompositeCanvas,
    DocumentExtent,
    FinalArtifact,
    PageMetrics,
    RunState,
    Tile,
    TileState,
    ViewportExtent,
)
from .device import ArtifactSink, FileArtifactSink, LoggingNotifier, Notifier, PageController
from .dimensions import DimensionAnalyzer
from .planner import TilePlanner
from .capture import CaptureOrchestrator
from .compose import ImageComposer
from .packager import ResultPackager

__all__ = [
    # Models
    'CaptureAttempt',
    'CaptureConfig',
    'CapturedTile',
    'CaptureRun',
    'CompositeCanvas',
    'DocumentExtent',
    'FinalArtifact',
    'PageMetrics',
    'RunState',
    'Tile',
    'TileState',
    'ViewportExtent',
    # Device
    'ArtifactSink',
    'FileArtifactSink',
    'LoggingNotifier',
    'Notifier',
    'PageController',
    # Stages
    'DimensionAnalyzer',
    'TilePlanner',
    'CaptureOrchestrator',
    'ImageComposer',
    'ResultPackager',
]

__version__ = '0.1.0'
