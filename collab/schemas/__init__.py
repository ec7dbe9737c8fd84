"""
Pydantic schemas for the collaboration server.

This package contains the inbound websocket event models and the request and
response models of the real-time HTTP API.
"""
