# Mark services as a package and expose key service modules for tests to monkeypatch.

from . import marker_extraction as marker_extraction  # noqa: F401
from . import text_extraction as text_extraction  # noqa: F401

__all__ = [
    "marker_extraction",
    "text_extraction",
]
