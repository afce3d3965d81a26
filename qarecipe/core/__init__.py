"""Core pipeline: command detection, revision tracking, context, invocation, normalization."""
