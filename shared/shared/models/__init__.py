from shared.models.pagination import Pagination

__all__ = ["Pagination"]
