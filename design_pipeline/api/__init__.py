"""
HTTP API for the design pipeline: models, schemas, routes and upload handling.
"""
