"""
Observability module for the quiz provider orchestration core.

Structured logging only: JSON lines in production, colored text in
development, with the current orchestration cycle id attached to every
record.
"""
