from . import bulk_edit

__all__ = ["bulk_edit"]
