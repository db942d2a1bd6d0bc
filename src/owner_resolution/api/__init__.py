"""
HTTP API for owner resolution
"""
