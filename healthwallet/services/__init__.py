# Mark services as a package and expose the modules tests monkeypatch.

from . import extraction as extraction  # noqa: F401
from . import storage as storage  # noqa: F401

__all__ = [
    "extraction",
    "storage",
]
