from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_schedule.config import DEFAULT_INPATIENT_SERVICES, DEFAULT_WORK_DAYS
from clinic_schedule.errors import NotFoundError
from clinic_schedule.models import Provider, Service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceInfo:
    id: int
    name: str
    is_inpatient: bool


class ServiceCatalog:
    def __init__(self, db: Session, inpatient_services: tuple[str, ...] = DEFAULT_INPATIENT_SERVICES) -> None:
        self.db = db
        self.inpatient_services = frozenset(inpatient_services)

    def resolve_id(self, name: str) -> int:
        service_id = self.db.scalar(select(Service.id).where(Service.name == name))
        if service_id is None:
            raise NotFoundError(f"Service {name!r} not found")
        return service_id

    def get_many(self, service_ids: Iterable[int]) -> dict[int, ServiceInfo]:
        ids = set(service_ids)
        if not ids:
            return {}
        rows = self.db.scalars(select(Service).where(Service.id.in_(ids))).all()
        return {row.id: ServiceInfo(row.id, row.name, row.name in self.inpatient_services) for row in rows}


class ProviderDirectory:
    def __init__(self, db: Session, default_work_days: tuple[int, ...] = DEFAULT_WORK_DAYS) -> None:
        self.db = db
        self.default_work_days = default_work_days

    def get(self, provider_id: int) -> Provider:
        provider = self.db.get(Provider, provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    def work_days(self, provider_id: int) -> list[int]:
        provider = self.get(provider_id)
        if not provider.work_days:
            return list(self.default_work_days)
        return sorted(set(provider.work_days))


class NotificationSender(Protocol):
    def send(self, event: str, recipient: str | None, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationSender:
    def send(self, event: str, recipient: str | None, payload: dict[str, Any]) -> None:
        logger.info("notification %s to %s: %s", event, recipient or "<no address>", payload)


def notify_safely(sender: NotificationSender, event: str, recipient: str | None, payload: dict[str, Any]) -> bool:
    try:
        sender.send(event, recipient, payload)
    except Exception:
        logger.exception("Failed to send %s notification", event)
        return False
    return True
