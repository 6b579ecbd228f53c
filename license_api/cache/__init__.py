"""
Redis cache for provider metadata
"""
