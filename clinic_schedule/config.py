from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_WORK_DAYS: tuple[int, ...] = (1, 2, 3, 4, 5)
DEFAULT_INPATIENT_SERVICES: tuple[str, ...] = ("Consults", "Burgundy")


@dataclass(frozen=True)
class EngineSettings:
    pto_service_id: int | None = None
    pto_service_name: str = "PTO"
    inpatient_services: tuple[str, ...] = DEFAULT_INPATIENT_SERVICES
    default_work_days: tuple[int, ...] = DEFAULT_WORK_DAYS
    admin_email: str | None = None

    def with_pto_service(self, service_id: int) -> EngineSettings:
        return EngineSettings(
            pto_service_id=service_id,
            pto_service_name=self.pto_service_name,
            inpatient_services=self.inpatient_services,
            default_work_days=self.default_work_days,
            admin_email=self.admin_email,
        )


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_settings() -> EngineSettings:
    raw_pto_id = os.getenv("PTO_SERVICE_ID", "").strip()
    raw_inpatient = os.getenv("INPATIENT_SERVICES", "")
    return EngineSettings(
        pto_service_id=int(raw_pto_id) if raw_pto_id else None,
        pto_service_name=os.getenv("PTO_SERVICE_NAME", "PTO"),
        inpatient_services=_split_csv(raw_inpatient) or DEFAULT_INPATIENT_SERVICES,
        admin_email=os.getenv("ADMIN_EMAIL") or None,
    )


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
