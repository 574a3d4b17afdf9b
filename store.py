import logging
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from errors import StoreFailure
from models import TransportRequest

logger = logging.getLogger(__name__)


class RequestStore:
    """Durable record store for transport requests.

    Each method commits on its own, so every operation is atomic per record.
    Database errors are logged and re-raised as ``StoreFailure``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _fail(self, operation: str) -> StoreFailure:
        logger.exception("Record store failed to %s", operation)
        self.session.rollback()
        return StoreFailure(operation)

    def create(self, record: TransportRequest) -> TransportRequest:
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            raise self._fail("create") from exc
        return record

    def get(self, request_id: int) -> Optional[TransportRequest]:
        try:
            return self.session.get(TransportRequest, request_id)
        except SQLAlchemyError as exc:
            raise self._fail("fetch") from exc

    def list_newest_first(self) -> List[TransportRequest]:
        query = select(TransportRequest).order_by(
            TransportRequest.created_at.desc(),
            TransportRequest.id.desc(),
        )
        try:
            return list(self.session.exec(query).all())
        except SQLAlchemyError as exc:
            raise self._fail("fetch") from exc

    def update_fields(self, record: TransportRequest, **fields: Any) -> TransportRequest:
        for name, value in fields.items():
            setattr(record, name, value)
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            raise self._fail("update") from exc
        return record

    def delete(self, record: TransportRequest) -> None:
        try:
            self.session.delete(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("delete") from exc
