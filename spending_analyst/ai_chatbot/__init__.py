"""
Texas DOGE spending assistant
Tool-loop chatbot over the 2022 state payments data
"""
from .bulk_download import BulkDownloadPreparer, BulkExporter, DownloadTracker
from .chatbot_core import SpendingAnalystChatbot, ToolRegistry
from .router import configure_dependencies, download_router, router

__all__ = [
    "BulkDownloadPreparer",
    "BulkExporter",
    "DownloadTracker",
    "SpendingAnalystChatbot",
    "ToolRegistry",
    "configure_dependencies",
    "download_router",
    "router",
]
