from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.server.api import system, totals
from src.server.settings.config import settings

app = FastAPI(title=settings.app_name, debug=settings.debug)

# CORS – så webbgränssnittet kan anropa förhandsvisningen
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(system.router)
app.include_router(totals.router)            # /totals/preview
