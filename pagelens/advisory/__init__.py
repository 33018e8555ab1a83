"""
Advisory AI client for crawl planning, page analysis and reflection.
"""
