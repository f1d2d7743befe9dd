"""Feed poller: scheduled RSS/Atom polling with downstream delivery."""

__version__ = "0.1.0"
