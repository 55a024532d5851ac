"""
ProcessOS
Model package — shared Flask-SQLAlchemy handle.

Usage:
    from processos.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
