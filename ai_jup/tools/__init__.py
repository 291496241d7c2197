"""Tool calls: argument sanitizing, dispatch and schemas."""
