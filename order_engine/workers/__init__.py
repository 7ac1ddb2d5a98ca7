"""Background workers."""
from .expiry_reaper import ExpiryReaper, start_expiry_reaper

__all__ = ["ExpiryReaper", "start_expiry_reaper"]
