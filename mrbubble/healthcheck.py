"""Wait for marketplace servers to report SERVING on grpc.health.v1.Health/Check.

Usage:
    mrbubble-healthcheck [--timeout SECONDS] [--interval SECONDS] HOST:PORT...

Example:
    mrbubble-healthcheck localhost:50061
    mrbubble-healthcheck --timeout 60 --interval 2 localhost:50061
"""

import argparse
import sys
import time

import grpc
import structlog
from grpc_health.v1 import health_pb2, health_pb2_grpc

from .handler import SERVICE_NAME

logger = structlog.get_logger()


def check_health(endpoint: str, service: str = SERVICE_NAME, timeout: float = 5.0) -> bool:
    """True if the endpoint answers SERVING for ``service``."""
    with grpc.insecure_channel(endpoint) as channel:
        stub = health_pb2_grpc.HealthStub(channel)
        try:
            response = stub.Check(health_pb2.HealthCheckRequest(service=service), timeout=timeout)
        except grpc.RpcError as e:
            logger.debug("health_check_failed", endpoint=endpoint, code=e.code().name)
            return False
    return response.status == health_pb2.HealthCheckResponse.SERVING


def wait_for(endpoints: list[str], timeout: float, interval: float) -> set[str]:
    """Poll until every endpoint is healthy or the timeout passes.

    Returns the endpoints still unhealthy.
    """
    deadline = time.monotonic() + timeout
    pending = set(endpoints)
    while pending:
        for endpoint in sorted(pending):
            if check_health(endpoint):
                pending.discard(endpoint)
                logger.info("service_healthy", endpoint=endpoint)
        if not pending or time.monotonic() >= deadline:
            break
        logger.info("waiting_for_services", pending=sorted(pending))
        time.sleep(interval)
    return pending


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Wait for marketplace servers to respond SERVING to health checks."
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=180,
        help="Maximum wait time in seconds (default: 180)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=5,
        help="Poll interval in seconds (default: 5)",
    )
    parser.add_argument(
        "services",
        nargs="+",
        metavar="HOST:PORT",
        help="gRPC service endpoints to check",
    )
    args = parser.parse_args(argv)

    unhealthy = wait_for(args.services, args.timeout, args.interval)
    if unhealthy:
        logger.error("services_unhealthy", endpoints=sorted(unhealthy))
        return 1
    logger.info("all_services_healthy")
    return 0


if __name__ == "__main__":
    sys.exit(main())
