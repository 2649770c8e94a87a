from __future__ import annotations

__all__ = ["ALGORITHM_VERSION", "__version__"]
__version__ = "1.4.0"

# Bumped whenever the same inputs may produce a different digest.
ALGORITHM_VERSION = 1
