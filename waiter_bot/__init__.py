"""
Waiter Bot: conversational order-taking engine for restaurant chat channels.
"""
