"""Prompt text handling: reference parsing, context gathering, system prompt."""
