"""
HTTP and WebSocket command surface.
"""
