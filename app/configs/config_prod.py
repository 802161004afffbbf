"""
Production environment configuration.

These are the baseline defaults. Local overrides live in config_local.py.
"""

# FastAPI docs are disabled in production
DOCS_ENABLED = False

CORS_ORIGINS = [
    "https://translate.docs-tools.dev",
]

ALLOWED_HOSTS = [
    "translate.docs-tools.dev",
    "api.docs-tools.dev",
    "localhost",
    "127.0.0.1",
]
