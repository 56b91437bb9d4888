"""
Backend package for the freelance marketplace API.

This package provides a FastAPI application on top of a storage port with
three interchangeable backends (in-memory, MongoDB, SQL) so the same service
runs with no database, against a document store, or against PostgreSQL.
"""
