"""Application configuration loaded from environment variables"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Login secrets (no defaults, login is refused when unset)
AUTH_USERNAME = os.getenv("AUTH_USERNAME")
AUTH_PASSWORD = os.getenv("AUTH_PASSWORD")

# Replicate (generation + file hosting)
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN")
REPLICATE_API_BASE = os.getenv("REPLICATE_API_BASE", "https://api.replicate.com/v1").rstrip("/")
REPLICATE_MODEL = os.getenv("REPLICATE_MODEL", "google/nano-banana-pro")
REPLICATE_POLL_INTERVAL_SECONDS = float(os.getenv("REPLICATE_POLL_INTERVAL_SECONDS", "1.0"))
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))

# "inline" sends data URLs, "upload" relays files first and sends hosted URLs
IMAGE_REFERENCE_MODE = os.getenv("IMAGE_REFERENCE_MODE", "inline").lower()

# Gallery bulk download pacing
DOWNLOAD_DELAY_SECONDS = float(os.getenv("DOWNLOAD_DELAY_SECONDS", "0.3"))
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "30"))

# Session cookie
SESSION_COOKIE_NAME = "auth_token"
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", str(60 * 60 * 24 * 7)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Upload policy
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png")
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_GARMENTS = 10
MAX_MODELS = 20
STYLE_CODE_PATTERN = r"^[A-Za-z0-9]{2,20}$"
PREVIEW_SIZE = (256, 256)
