"""Share global services between clusters through a central hub server."""

__version__ = "0.1.0"