"""
Utility helpers for the ingestion app.
"""
