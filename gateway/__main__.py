"""Run the gateway with uvicorn: ``python -m gateway``."""

import logging

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from config import configure_logging, get_config  # noqa: E402
from cogs.moodchat.core import ChatConfig  # noqa: E402

settings = get_config()
configure_logging(settings.logging.gateway_file, settings.logging.level)
logger = logging.getLogger('gateway')


def main() -> None:
    chat_config = ChatConfig()
    host, port = chat_config.gateway.host, chat_config.gateway.port
    logger.info(f"Server running on {host}:{port}")
    logger.info(f"Health check: http://localhost:{port}/health")
    uvicorn.run(
        "gateway.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_config=None,
    )


if __name__ == '__main__':
    main()
