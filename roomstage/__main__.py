import logging

import uvicorn

from roomstage.config import settings
from roomstage.main import create_app, setup_logging


def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info(f"Starting server on 0.0.0.0:{settings.compute_port}")
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.compute_port)


if __name__ == "__main__":
    main()
