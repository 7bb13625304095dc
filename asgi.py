"""
asgi.py -- Application assembly for ResumeLens.

The core app in api/main.py only carries the auth endpoint and /health.
Optional surfaces -- currently the disabled payments stub -- are mounted here
so api/main.py never depends on them.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from api.routes.payments import router as payments_router

app.include_router(payments_router, tags=["Payments"])
