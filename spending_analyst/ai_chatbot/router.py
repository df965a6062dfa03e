"""
FastAPI Routers for the Spending Assistant
Chat endpoint, health check and the CSV download endpoint
"""
from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, Response

from spending_analyst.core.logger import get_logger
from spending_analyst.db.rpc import DatabaseRPC

from .bulk_download import BulkDownloadError, BulkExporter
from .chatbot_core import SpendingAnalystChatbot
from .llm_providers import LLMProvider, LLMProviderFactory
from .schemas import CamelModel

logger = get_logger(__name__)

# Create routers
router = APIRouter(prefix="/chatbot", tags=["AI Chatbot"])
download_router = APIRouter(prefix="/api", tags=["Bulk Download"])


# Pydantic models for request/response
class ChatbotQueryRequest(CamelModel):
    """Request model for chatbot query"""
    question: str
    model: Optional[str] = None
    conversation_history: Optional[List[Dict[str, str]]] = None


class DownloadRequest(CamelModel):
    """Request model for the CSV download"""
    sql_query: Optional[str] = None
    filename: Optional[str] = None


# Dependency injection placeholders (to be configured by integrating app)
_get_rpc: Optional[Callable[[], DatabaseRPC]] = None
_chatbot_instance: Optional[SpendingAnalystChatbot] = None


def configure_dependencies(
    get_rpc: Callable[[], DatabaseRPC],
    provider_factory: Callable[[str], LLMProvider] = LLMProviderFactory.create,
):
    """
    Configure dependencies for the chatbot and download routers

    Args:
        get_rpc: Returns the database RPC client used by every endpoint
        provider_factory: Builds an LLM provider from a model name
    """
    global _get_rpc, _chatbot_instance

    _get_rpc = get_rpc
    _chatbot_instance = SpendingAnalystChatbot(get_rpc(), provider_factory=provider_factory)


def get_rpc() -> DatabaseRPC:
    """Get database RPC dependency"""
    if _get_rpc is None:
        raise RuntimeError("Database dependency not configured. Call configure_dependencies() first.")
    return _get_rpc()


def get_chatbot() -> SpendingAnalystChatbot:
    """Get chatbot instance"""
    if _chatbot_instance is None:
        raise RuntimeError("Chatbot not initialized. Call configure_dependencies() first.")
    return _chatbot_instance


# Routes
@router.post("/query")
async def chatbot_query(payload: ChatbotQueryRequest):
    """
    Process chatbot query

    Request body:
    - question: Natural language question
    - model: LLM provider (e.g., 'gpt-4o', 'claude-haiku-4.5')
    - conversationHistory: Optional list of previous messages

    Returns:
    - reply: Text response
    - toolInvocations: Every tool call of the turn with its arguments and result
    """
    try:
        chatbot = get_chatbot()
        result = await chatbot.process_query(
            question=payload.question,
            provider_name=payload.model,
            conversation_history=payload.conversation_history,
        )
        return result.to_payload()

    except Exception as e:
        logger.error("Chatbot query failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "chatbot_initialized": _chatbot_instance is not None,
        "dependencies_configured": _get_rpc is not None,
    }


@download_router.post("/download-csv")
def download_csv(payload: DownloadRequest):
    """
    Run a prepared bulk query and stream it back as a CSV attachment

    Request body:
    - sqlQuery: The SELECT produced by prepareBulkDownload
    - filename: Suggested file name (``.csv`` is appended when missing)
    """
    if not payload.sql_query:
        return JSONResponse({"error": "Invalid SQL query provided"}, status_code=400)
    try:
        export = BulkExporter(get_rpc()).export(payload.sql_query, payload.filename or "export")
    except BulkDownloadError as exc:
        logger.error("CSV download failed: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    except Exception as exc:
        logger.error("CSV generation crashed: %s", exc, exc_info=True)
        return JSONResponse(
            {"error": "Internal server error during CSV generation"}, status_code=500
        )

    return Response(
        content=export.content,
        media_type="text/csv",
        headers={
            # Explicit so no charset parameter is appended.
            "Content-Type": "text/csv",
            "Content-Disposition": f'attachment; filename="{export.filename}"',
        },
    )
