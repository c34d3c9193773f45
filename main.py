from dotenv import load_dotenv
load_dotenv()

import uvicorn

from core.logger import get_logger

logger = get_logger(__name__)


def main():
    logger.info("Starting Hybrid RAG API")
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
