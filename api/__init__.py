"""
FastAPI RESTful API for the Authors & Books service.

This package provides:
- Author and book CRUD backed by MongoDB
- Referential guards between books and their authors
- Centralized translation of failures into JSON error envelopes
"""
