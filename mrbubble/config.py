"""Runtime settings read from the environment.

Environment variables:
    PORT: TCP port (default 50061)
    TRANSPORT_TYPE: "tcp" (default) or "uds"
    UDS_BASE_PATH: Base directory for sockets (default: /tmp/mrbubble)
    SERVICE_NAME: Socket and health-check name (default: marketplace)
    QR_SECRET: Order label signing key, falling back to SESSION_SECRET
    MRBUBBLE_SEED: Seed the store with the default catalogue ("1"/"0")
    MAX_WORKERS: Thread pool size for sync handlers (default 10)
"""

import os
from dataclasses import dataclass

DEFAULT_PORT = "50061"
DEV_QR_SECRET = "dev-secret-change-me"

_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    port: str = DEFAULT_PORT
    transport: str = "tcp"
    uds_base_path: str = "/tmp/mrbubble"
    service_name: str = "marketplace"
    qr_secret: str = DEV_QR_SECRET
    seed: bool = True
    max_workers: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=os.environ.get("PORT", DEFAULT_PORT),
            transport=os.environ.get("TRANSPORT_TYPE", "tcp").lower(),
            uds_base_path=os.environ.get("UDS_BASE_PATH", "/tmp/mrbubble"),
            service_name=os.environ.get("SERVICE_NAME", "marketplace"),
            qr_secret=(
                os.environ.get("QR_SECRET")
                or os.environ.get("SESSION_SECRET")
                or DEV_QR_SECRET
            ),
            seed=os.environ.get("MRBUBBLE_SEED", "1").strip().lower() not in _FALSE,
            max_workers=int(os.environ.get("MAX_WORKERS", "10")),
        )

    def uses_dev_secret(self) -> bool:
        return self.qr_secret == DEV_QR_SECRET
