"""CineTracker catalog browser backend."""
