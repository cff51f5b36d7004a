from newsglobe.search.base import SocialPostFetcher
from newsglobe.search.x import RateLimitInfo, SearchPage, XPostFetcher, query_variants

__all__ = [
    "RateLimitInfo",
    "SearchPage",
    "SocialPostFetcher",
    "XPostFetcher",
    "query_variants",
]
