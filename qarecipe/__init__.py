"""
qarecipe - webhook-driven QA test recipes for pull requests and tickets.

Receives comment webhooks from GitHub, Bitbucket, Jira and Linear, detects
``/qa`` and ``/short`` trigger commands, analyzes only the revisions added
since the last run, and posts a test recipe back as a comment.
"""

__version__ = "0.1.0"
