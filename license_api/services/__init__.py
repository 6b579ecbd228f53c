"""
Billing engine services
"""
