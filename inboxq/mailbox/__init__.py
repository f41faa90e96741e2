"""Request-scoped orchestration over the cache and Gmail"""
