import os

import uvicorn

from app.coach.web import app


if __name__ == "__main__":
    uvicorn.run(
        "app.coach.web:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
