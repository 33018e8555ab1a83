"""
pagelens - crawl orchestration engine.

Navigates websites with a headless browser, captures screenshots, runs OCR
on them and reports live job status to observers.
"""

__version__ = "0.1.0"
