"""jar-flattener.

A small build utility that merges a published Maven artifact and all of its
runtime dependencies into a single jar, plus a directly executable launcher.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
