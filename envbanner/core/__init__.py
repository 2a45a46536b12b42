"""
envbanner Core Module
"""

from envbanner.core.banner import build_banner
from envbanner.core.intercept import ProxyResponse, modify_response, parse_media_type
from envbanner.core.proxy import BannerProxy
from envbanner.core.rewrite import InboundRequest, OutboundRequest, rewrite_request

__all__ = [
    "BannerProxy",
    "InboundRequest",
    "OutboundRequest",
    "ProxyResponse",
    "build_banner",
    "modify_response",
    "parse_media_type",
    "rewrite_request",
]
