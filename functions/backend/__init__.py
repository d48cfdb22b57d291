"""
REST deployment of the ArtHub social service.

A FastAPI application over SQL-backed repositories, with JWT bearer
authentication and bcrypt password hashing.
"""
