"""syncdb - dependency-ordered database snapshot export and import."""

__version__ = "1.0.0"
__author__ = "syncdb Contributors"

from syncdb.config import Settings

__all__ = ["Settings", "__version__"]
