"""
Text recognition and keyword extraction.
"""
