"""
Durable store (SQLite) for jobs, artifacts, recognitions and keywords.
"""
