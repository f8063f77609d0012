"""
Services for the LicitaBR platform.
"""

from .chat_service import ChatRelay, ChatProviderError, ChatConfigurationError, prepare_messages
from .n8n_service import N8NAdminClient, N8NAPIError, build_mcp_proxy_workflow
from .notice_source import NoticeSource, MockNoticeSource, PNCPNoticeSource, create_notice_source
from .pncp_service import PNCPService, PNCPAPIError, RateLimitExceededError
from .risk_analyzer import analyze_risk, MissingContentError
from .summarizer import summarize_notice, fallback_summary

__all__ = [
    "ChatRelay",
    "ChatProviderError",
    "ChatConfigurationError",
    "prepare_messages",
    "N8NAdminClient",
    "N8NAPIError",
    "build_mcp_proxy_workflow",
    "NoticeSource",
    "MockNoticeSource",
    "PNCPNoticeSource",
    "create_notice_source",
    "PNCPService",
    "PNCPAPIError",
    "RateLimitExceededError",
    "analyze_risk",
    "MissingContentError",
    "summarize_notice",
    "fallback_summary",
]
