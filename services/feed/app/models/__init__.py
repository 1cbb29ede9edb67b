from app.models.feed import Feed

__all__ = [
    "Feed",
]
