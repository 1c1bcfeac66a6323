from .storage_slots import StorageSlotsRepository
from . import models

__all__ = ["StorageSlotsRepository", "models"]
