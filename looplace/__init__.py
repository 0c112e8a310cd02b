"""Headless PVT and 2-back trial engines with psychometric scoring.

Nothing under `looplace/` imports Qt; the optional desktop client lives in
`looplace_ui`.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
