"""Shared table metadata."""

from sqlalchemy import MetaData

metadata = MetaData()
