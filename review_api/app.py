from fastapi import FastAPI

from .routes import router

app = FastAPI(title="Jellywrapped", description="Jellyfin year in review")

# Include routes
app.include_router(router)
