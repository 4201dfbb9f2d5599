"""blamediff: annotate unified diffs with the commits that own each line."""

__version__ = "0.1.0"
