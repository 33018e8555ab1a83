"""
Real-time event channel.
"""
