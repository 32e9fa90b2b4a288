from __future__ import annotations


class ScalebotError(RuntimeError):
    """Base class for failures that end a single bot command."""
