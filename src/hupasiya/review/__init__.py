"""Review provider adapters (GitHub pull requests over REST)."""

from hupasiya.review.github import GitHubReviewProvider, parse_ref

__all__ = ["GitHubReviewProvider", "parse_ref"]
