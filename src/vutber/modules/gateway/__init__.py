"""Network boundary modules."""

from .http_api import HttpGateway, format_sse

__all__ = ["HttpGateway", "format_sse"]
