"""Application-wide constants for the marketplace payments core."""

# Brand Configuration
BRAND_NAME = "Marketplace"

# API Documentation
API_TITLE = f"{BRAND_NAME} Payments API"
API_DESCRIPTION = (
    f"Backend API for {BRAND_NAME} - payment authorization, escrow and provider settlement"
)
API_VERSION = "1.0.0"
API_V1_PREFIX = "/api/v1"

# Text constraints
MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 1000
