"""ngrisk: static upgrade-risk scanner for Angular source trees."""

__version__ = "0.1.0"
