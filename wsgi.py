"""
Flask CLI / WSGI entry point.

Usage:
    FLASK_APP=wsgi flask seed-demo
    FLASK_APP=wsgi flask reactor-scan
    REACTOR_AUTOSTART=true FLASK_APP=wsgi flask run
"""

from processos import create_app

app = create_app()
