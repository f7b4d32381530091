"""Run multiple package scripts in parallel, sequentially or as a waterfall."""

__version__ = "1.1.3"
