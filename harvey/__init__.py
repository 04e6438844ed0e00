"Consultation data cache and summary review core."

from importlib import metadata

__all__ = ["__version__"]


def __getattr__(name: str) -> str:
    if name == "__version__":
        try:
            return metadata.version("harvey-core")
        except metadata.PackageNotFoundError:  # pragma: no cover - source checkouts
            return "0.0.0"
    raise AttributeError(name)
