"""Browser-driven CARB export from the Pacific Track portal."""

from vtxsync.exporter.browser import BrowserSession
from vtxsync.exporter.download import DownloadCapture
from vtxsync.exporter.portal import ExportState, PortalExporter

__all__ = ["BrowserSession", "DownloadCapture", "ExportState", "PortalExporter"]
