"""OpenAI-compatible protocol gateway for Dify applications."""

from difygate.gateway.calllog import CallLogger
from difygate.gateway.errors import (
    GatewayError,
    InvalidConfiguration,
    InvalidRequest,
    Unauthorized,
    UpstreamError,
)
from difygate.gateway.keys import KeyResolver
from difygate.gateway.models import AppConfig, BotType, ChatCompletionRequest
from difygate.gateway.reframer import StreamReframer
from difygate.gateway.service import DifyGateway, StreamResult
from difygate.gateway.upstream import DifyClient

__all__ = [
    "AppConfig",
    "BotType",
    "CallLogger",
    "ChatCompletionRequest",
    "DifyClient",
    "DifyGateway",
    "GatewayError",
    "InvalidConfiguration",
    "InvalidRequest",
    "KeyResolver",
    "StreamReframer",
    "StreamResult",
    "Unauthorized",
    "UpstreamError",
]
