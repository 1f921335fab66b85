"""
Serverless Todo package.

A todo resource API with cursor pagination and deferred aging, served either
by the FastAPI app (``serverless_todo.main:app``) or by the AWS Lambda entry
points in ``serverless_todo.handlers``.
"""

__version__ = "0.1.0"
