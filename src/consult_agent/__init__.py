"""Consultation orchestration package."""

from .config import CacheConfig, ConsultantConfig, ContextConfig, RateLimitConfig

__all__ = ["CacheConfig", "ConsultantConfig", "ContextConfig", "RateLimitConfig"]
