"""Prompt requests and the conversation loop that answers them."""
