"""notedown: wikilink-aware tooling for Markdown note workspaces."""

__version__ = "0.4.0"
