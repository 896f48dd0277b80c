"""layebuild - incremental build and test orchestrator for the laye compiler.

Compiles the compiler's translation units into object files in parallel,
links the driver, test runner and fuzz harness, and drives execution tests
against the freshly built driver.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
