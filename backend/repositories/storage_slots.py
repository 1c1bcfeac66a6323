"""
Key-value slot repository backed by SQLAlchemy/SQLite.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session

from repositories.models import StorageSlotORM


class StorageSlotsRepository:
    """Read, overwrite and erase raw string values by key."""

    def get_value(self, session: Session, key: str) -> Optional[str]:
        orm = session.get(StorageSlotORM, key)
        return orm.value if orm else None

    def put_value(self, session: Session, key: str, value: str) -> None:
        orm = session.get(StorageSlotORM, key)
        if orm:
            orm.value = value
            orm.updated_at = datetime.now(timezone.utc)
        else:
            orm = StorageSlotORM(key=key, value=value, updated_at=datetime.now(timezone.utc))
        session.add(orm)
        session.commit()

    def delete_value(self, session: Session, key: str) -> bool:
        orm = session.get(StorageSlotORM, key)
        if not orm:
            return False
        session.delete(orm)
        session.commit()
        return True
