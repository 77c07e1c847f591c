"""Studio Mirror: local mirror of Cucumber Studio folders and scenarios."""

__version__ = "0.1.0"
