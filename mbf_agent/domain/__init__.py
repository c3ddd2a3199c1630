"""Device-side domain code: settings and commands, APK inspection, mod tags.

Nothing here knows about FastAPI or HTTP.
"""
__all__ = ["apk", "device", "mod_tag"]
