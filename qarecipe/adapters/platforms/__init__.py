"""Collaboration-platform API clients."""
from qarecipe.adapters.platforms.base import ReviewPlatform
from qarecipe.adapters.platforms.bitbucket import BitbucketClient
from qarecipe.adapters.platforms.github import GitHubClient
from qarecipe.adapters.platforms.http import HttpClient
from qarecipe.adapters.platforms.jira import JiraClient
from qarecipe.adapters.platforms.linear import LinearClient
from qarecipe.core.models import Installation, Platform


def build_platform_client(installation: Installation, jira_app_key: str = "com.firstqa.jira") -> ReviewPlatform:
    """Construct the client for *installation*'s platform."""
    if installation.platform == Platform.GITHUB:
        return GitHubClient(installation)
    if installation.platform == Platform.BITBUCKET:
        return BitbucketClient(installation)
    if installation.platform == Platform.JIRA:
        return JiraClient(installation, app_key=jira_app_key)
    if installation.platform == Platform.LINEAR:
        return LinearClient(installation)
    raise ValueError(f"Unsupported platform: {installation.platform}")


__all__ = [
    "BitbucketClient",
    "GitHubClient",
    "HttpClient",
    "JiraClient",
    "LinearClient",
    "ReviewPlatform",
    "build_platform_client",
]
