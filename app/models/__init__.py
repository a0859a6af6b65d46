"""
Siteline — construction project management platform.
SQLAlchemy extension instance shared by every model module.

Model modules are imported in ``create_app`` so that ``db.create_all()``
and Flask-Migrate see the full metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
