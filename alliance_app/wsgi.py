from __future__ import annotations

# WSGI entry point: gunicorn loads 'alliance_app.wsgi:app'
from alliance_app.app import create_app


app = create_app()
