"""Server utilities for the marketplace service.

Supports both TCP and Unix Domain Socket (UDS) transports.
"""

import os
from concurrent import futures
from typing import Optional

import grpc
import structlog
from grpc_health.v1 import health, health_pb2, health_pb2_grpc

from .config import Settings
from .handler import SERVICE_NAME, MarketplaceHandler


def configure_logging() -> None:
    """Configure structlog with JSON rendering and ISO timestamps."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


def get_transport_config(settings: Settings) -> tuple[str, str]:
    """Resolve the listen address.

    Returns:
        Tuple of (transport_type, address)
        - For TCP: ("tcp", "[::]:{port}")
        - For UDS: ("uds", "unix:{socket_path}")
    """
    if settings.transport == "uds":
        socket_path = f"{settings.uds_base_path}/{settings.service_name}.sock"
        os.makedirs(os.path.dirname(socket_path), exist_ok=True)
        # Stale socket from a previous run
        if os.path.exists(socket_path):
            os.remove(socket_path)
        return ("uds", f"unix:{socket_path}")

    return ("tcp", f"[::]:{settings.port}")


async def create_server(
    handler: MarketplaceHandler, settings: Settings
) -> tuple[grpc.aio.Server, str]:
    """Create an asyncio gRPC server with health checking.

    Returns:
        Tuple of (server, address) where address includes the transport prefix
    """
    transport_type, address = get_transport_config(settings)

    server = grpc.aio.server(
        migration_thread_pool=futures.ThreadPoolExecutor(max_workers=settings.max_workers)
    )
    server.add_generic_rpc_handlers((handler.generic_handler(),))

    health_servicer = health.aio.HealthServicer()
    health_pb2_grpc.add_HealthServicer_to_server(health_servicer, server)
    await health_servicer.set("", health_pb2.HealthCheckResponse.SERVING)
    await health_servicer.set(SERVICE_NAME, health_pb2.HealthCheckResponse.SERVING)

    server.add_insecure_port(address)
    return server, address


async def run_server(
    handler: MarketplaceHandler,
    settings: Settings,
    logger: Optional[structlog.BoundLogger] = None,
) -> None:
    """Run the server until termination."""
    logger = logger or structlog.get_logger()
    server, address = await create_server(handler, settings)
    await server.start()
    logger.info(
        "server_started",
        service=SERVICE_NAME,
        transport=settings.transport,
        address=address,
    )
    try:
        await server.wait_for_termination()
    finally:
        await server.stop(grace=None)
        logger.info("server_stopped", service=SERVICE_NAME)
