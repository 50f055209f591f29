from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from imposter_game.config import settings
from imposter_game.routes import game

app = FastAPI(title=settings.APP_NAME, version=settings.VERSION)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include game routes

app.include_router(game.router)


@app.get("/health")
def health_check():
    """Multi-device mode is only available when a store is configured."""
    return {"status": "healthy", "multi_device": bool(settings.DATABASE_URL)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "imposter_game.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level="info"
    )
