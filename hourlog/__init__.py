"""hourlog package.

The FastAPI app is resolved lazily so that importing the calculators and
gateways (e.g. from the CLI report or tests) does not read web settings.
"""

__all__ = ["app", "__version__"]

__version__ = "0.1.0"


def __getattr__(name: str):
    if name == "app":
        from hourlog.app import app

        return app
    raise AttributeError(f"module 'hourlog' has no attribute {name!r}")
