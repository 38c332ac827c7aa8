"""
Audit Pack
Database models package.

Import the shared ``db`` handle from here:

    from auditpack.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
