"""
Centralized Constants for the LeadMap Backend Application.
All hardcoded values should be defined here for easy maintenance.
"""

# ============================================
# API TIMEOUTS (in seconds)
# ============================================
TIMEOUT_WORKER_DISPATCH = 30.0        # Outbound call to the scraping worker
TIMEOUT_ZEROBOUNCE_INDIVIDUAL = 20.0  # Single email verification

# ============================================
# EXTERNAL API URLS
# ============================================
# ZeroBounce Email Verification
ZEROBOUNCE_VALIDATE_URL = "https://api.zerobounce.net/v2/validate"

# ============================================
# PAGINATION
# ============================================
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

# ============================================
# BATCH PROCESSING LIMITS
# ============================================
INGESTION_CHUNK_SIZE = 500   # Rows per INSERT statement
MAX_LIMIT_RESULTS = 500      # Max leads a single session may request

# ============================================
# DATABASE POOL SETTINGS
# ============================================
DB_POOL_SIZE = 5
DB_MAX_OVERFLOW = 10
DB_POOL_RECYCLE = 300
