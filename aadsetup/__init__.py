from .configure import configure_applications, main

__all__ = ["configure_applications", "main"]
