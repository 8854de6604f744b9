"""gh-stars - local cache and hybrid search for GitHub stars."""

__version__ = "0.2.0"
