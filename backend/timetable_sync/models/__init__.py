from .blob_entry import BlobEntry

__all__ = ["BlobEntry"]
