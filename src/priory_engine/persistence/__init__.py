from .files import FileBlobStore
from .party_store import PartyStore
from .save_store import SaveStore

__all__ = ["FileBlobStore", "PartyStore", "SaveStore"]
