"""DevKeep backend: projects, communities and the sharing rules between them."""

__version__ = "0.1.0"
