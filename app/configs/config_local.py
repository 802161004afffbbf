"""
Development / local environment configuration overrides.

Only values that DIFFER from production need to be declared here.
The base config.py merges these on top of the production defaults.
"""

# FastAPI docs are enabled in development
DOCS_ENABLED = True

# Relaxed CORS for local development
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8000",
]

# Trusted hosts include localhost and tunnel hosts used for webhook testing
ALLOWED_HOSTS = [
    "localhost",
    "127.0.0.1",
    "*.ngrok-free.app",
]
