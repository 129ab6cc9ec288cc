from .r2_storage import R2ObjectStore

__all__ = ["R2ObjectStore"]
