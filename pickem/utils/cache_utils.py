"""
Cache utilities for leaderboard reads

Leaderboard responses are cached per season. Each season carries a generation
number in the cache; bumping it after a ranking write makes every cached page
for that season unreachable without having to enumerate keys, which SimpleCache
can't do.
"""

import functools

from flask import current_app, request

from pickem import cache


def make_cache_key(*args, **kwargs):
    """Generate a cache key from request path and arguments"""
    path = request.path
    args_str = "_".join(str(arg) for arg in args)
    kwargs_str = "_".join(f"{k}_{v}" for k, v in sorted(kwargs.items()))
    return f"{path}_{args_str}_{kwargs_str}".replace("/", "_")


def _generation_key(season):
    return f"leaderboard_generation_{season}"


def leaderboard_generation(season):
    return cache.get(_generation_key(season)) or 0


def cached_route(timeout=None, key_prefix="view"):
    """
    Decorator for caching route responses

    Routes taking a ``season`` argument are keyed on that season's cache
    generation, so invalidate_leaderboard_cache() drops them.

    Args:
        timeout: Cache timeout in seconds (default LEADERBOARD_CACHE_TIMEOUT)
        key_prefix: Prefix for cache key
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            # Generate cache key
            cache_key = f"{key_prefix}_{make_cache_key(*args, **kwargs)}"
            if "season" in kwargs:
                cache_key = f"{cache_key}_g{leaderboard_generation(kwargs['season'])}"

            # Try to get from cache
            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Cache hit for key: {cache_key}")
                return result

            # Execute function and cache result
            result = f(*args, **kwargs)
            cache.set(
                cache_key,
                result,
                timeout=timeout or current_app.config.get("LEADERBOARD_CACHE_TIMEOUT", 300),
            )
            current_app.logger.debug(f"Cache set for key: {cache_key}")

            return result

        return wrapped

    return decorator


def invalidate_leaderboard_cache(season):
    """
    Invalidate cached leaderboard pages for a season

    Args:
        season: Season year whose boards changed
    """
    try:
        generation = leaderboard_generation(season) + 1
        # Generation must outlive any page cached under the previous one
        cache.set(_generation_key(season), generation, timeout=0)
        current_app.logger.debug(
            f"Leaderboard cache for season {season} moved to generation {generation}"
        )
    except Exception as e:
        # Cached pages expire on their own; a failed bump only delays freshness
        current_app.logger.error(f"Failed to invalidate leaderboard cache: {e}")


def get_cache_stats():
    """Get cache statistics"""
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
    }
