"""
Persistence for crypto subscriptions
"""
