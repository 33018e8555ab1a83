"""
pagelens crawler module.

Capture sessions, link extraction, scroll detection, the URL frontier and
the per-URL pipeline.
"""
