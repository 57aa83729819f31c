"""uMini live ISO builder.

Core design goals:
- Ordered stages with explicit entry/exit checks, never skipped or retried
- Bind mounts released in reverse order on every exit path
- Fallback strategies for mastering the ISO
- Exactly-once teardown (signals, errors, normal exit)
- Every privileged call elevated explicitly
"""

__version__ = "0.2.0"

__all__ = ["__version__"]
