"""Metadata for sitesweep."""

__all__ = [
    "__title__",
    "__version__",
    "__description__",
    "__credits__",
    "__requires_python__",
]

__title__ = "sitesweep"
__version__ = "0.1.0"
__description__ = (
    "Clusters a website's pages by DOM structure and scans a representative "
    "sample under four viewport/identity combinations."
)
__credits__ = [{"name": "sitesweep contributors"}]
__requires_python__ = ">=3.10"
