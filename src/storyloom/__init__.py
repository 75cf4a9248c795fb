"""AI service mediation core for storyloom narrative games."""

from __future__ import annotations

from storyloom.__about__ import __version__

__all__ = ("__version__",)
