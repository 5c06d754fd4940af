"""
Infrastructure Module

Storage backends: Redis client, in-memory cache and the tiered cache on top.
"""
