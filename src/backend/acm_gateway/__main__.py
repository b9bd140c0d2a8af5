"""Run the gateway with ``python -m acm_gateway``."""

import uvicorn

from acm_gateway.core.config import settings


def main() -> None:
    uvicorn.run(
        "acm_gateway.main:app",
        host="0.0.0.0",
        port=settings.http_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
