from tirestore.config import settings
from tirestore.main import app

__all__ = ["app"]

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=settings.port, reload=settings.debug)
