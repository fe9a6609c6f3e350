"""BDI x RNA-seq fusion analysis of canine lymphoma treatment resistance."""

__version__ = "0.1.0"
