"""
Infrastructure package: logging, HTTP serving and the rollup node / L1 clients.
"""

from fpc_services.infra.http_server import HttpRequest, HttpResponse, start_http_server
from fpc_services.infra.logging_cfg import build_logger, log_event
from fpc_services.infra.rollup_node import NodeInfo, NodeRpcError, RollupNodeClient

__all__ = [
    "HttpRequest",
    "HttpResponse",
    "start_http_server",
    "build_logger",
    "log_event",
    "NodeInfo",
    "NodeRpcError",
    "RollupNodeClient",
]
