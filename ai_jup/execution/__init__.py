"""Execution backends and session bookkeeping."""
