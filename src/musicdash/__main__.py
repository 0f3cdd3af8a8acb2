"""Entry point for running musicdash as a module: python -m musicdash."""

import logging
import sys

from .config import MusicDashConfig
from .server import create_app


def main() -> None:
    """Run the musicdash HTTP server."""
    try:
        config = MusicDashConfig.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import anyio
    import uvicorn

    app = create_app(config)

    async def _serve() -> None:
        uvi_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level=config.log_level,
        )
        uvi_server = uvicorn.Server(uvi_config)
        await uvi_server.serve()

    anyio.run(_serve)


if __name__ == "__main__":
    main()
