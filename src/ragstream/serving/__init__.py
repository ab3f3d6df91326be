"""
Serving: FastAPI application for chat and document ingestion.
"""
