import os

import uvicorn
from scholar_match.config.logging_config import setup_logging

if __name__ == "__main__":
    setup_logging()

    # log_config=None keeps uvicorn on the dictConfig above
    uvicorn.run(
        "scholar_match.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "").lower() in ("1", "true", "yes"),
        log_config=None,
    )
