# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
HTTP server entry point for the alpha calibration endpoint.

Environment Variables:
    CALIBRATION_HTTP_HOST: HTTP server host (default: 0.0.0.0)
    CALIBRATION_HTTP_PORT: HTTP server port (default: 8000)
    CALIBRATION_HTTP_PATH: Endpoint path (default: /alpha-calibration)
    CALIBRATION_HTTP_LOG_LEVEL: Log level (default: INFO)

Example:
    $ OPENAI_API_KEY=... PINECONE_API_KEY=... python -m hybrid_calibration.server
"""

import asyncio
import logging
import sys

from .config import settings

logger = logging.getLogger(__name__)


async def run_http_server() -> None:
    """Serve the FastAPI app with uvicorn until shutdown."""
    import uvicorn

    from .web.app import create_app

    http = settings.http
    logger.info(f"Starting HTTP server on {http.host}:{http.port}{http.path}")
    app = create_app(settings.get())
    config = uvicorn.Config(
        app,
        host=http.host,
        port=http.port,
        log_config=None,  # Use existing logging config
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Entry point for the calibration server.

    Exits with code 1 on configuration errors or fatal failures.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        logging.getLogger().setLevel(settings.http.log_level.upper())
        asyncio.run(run_http_server())
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
