import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

# Projektrot (mappen som innehåller "src")
ROOT = Path(__file__).resolve().parents[3]


def _split_list(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    app_name: str = "PaintDesk - offerter, projekt och fakturor"
    environment: str = os.getenv("ENVIRONMENT", "dev")
    debug: bool = os.getenv("DEBUG", "1") == "1"

    # Backend (extern tjänst som sparar offerter/projekt/fakturor)
    backend_url: str = os.getenv("BACKEND_URL", "http://localhost:3000/api")
    backend_timeout_seconds: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "30"))

    # Lokala utkast
    draft_dir: str = os.getenv("DRAFT_DIR", str(ROOT / "knowledge" / "drafts"))
    draft_debounce_seconds: float = float(os.getenv("DRAFT_DEBOUNCE_SECONDS", "2.0"))

    # Standardvillkor som förifylls i nya formulär
    default_terms_path: str = os.getenv(
        "DEFAULT_TERMS_PATH", str(ROOT / "knowledge" / "settings" / "default_terms.yaml")
    )

    cors_origins: List[str] = _split_list(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )


settings = Settings()
