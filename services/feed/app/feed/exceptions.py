"""
Domain exceptions raised by the feed service layer.

The controller layer catches these and converts them to HTTPException.
"""


class FeedUnavailable(Exception):
    """Generation failed and no fallback content could be produced."""
