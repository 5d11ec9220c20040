"""
asgi.py -- Application assembly for Crewroster.

This is the ONLY file that imports from both api/ and web/. It joins the JSON
API and the server-rendered profile UI into a single ASGI app. api/main.py
knows nothing about web/; web/routes.py knows nothing about api/. Both reach
the same stores through app.state.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# Mount the web UI router here, not in api/main.py.
app.include_router(web_router, tags=["Web UI"])
