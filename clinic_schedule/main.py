from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import clinic_schedule.db as app_db
from clinic_schedule.assignments import delete_batch, submit_batch
from clinic_schedule.availability import AvailabilityEvaluator
from clinic_schedule.collaborators import LoggingNotificationSender, ProviderDirectory, ServiceCatalog
from clinic_schedule.config import EngineSettings, load_settings, log_level
from clinic_schedule.conflicts import ConflictDetector
from clinic_schedule.db import get_db
from clinic_schedule.errors import NotFoundError, ScheduleError
from clinic_schedule.history import ChangeHistoryLedger, history_out
from clinic_schedule.holidays import HolidayPolicy
from clinic_schedule.pto import PTOLifecycleManager
from clinic_schedule.schemas import (
    AlternatingApplyPayload,
    AvailabilityDecisionOut,
    BulkDeletePayload,
    BulkDeleteResult,
    BulkSubmitPayload,
    BulkSubmitResult,
    CheckResult,
    HistoryActionPayload,
    HistoryEntryOut,
    HolidayOut,
    PTOCreatePayload,
    PTOCreateResult,
    PTODecisionResult,
    PTODeleteResult,
    PTORequestOut,
    PTORequestPayload,
    ReconciliationGap,
    RedoResult,
    ReviewPayload,
    TemplateApplyPayload,
    TemplateApplyResult,
    TemplateAssignmentIn,
    TemplateCreatePayload,
    TemplateFromWeekPayload,
    TemplateOut,
    UndoResult,
)
from clinic_schedule.template_expansion import TemplateExpansionEngine, template_out

logging.basicConfig(level=log_level(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def resolve_settings(settings: EngineSettings, db: Session) -> EngineSettings:
    if settings.pto_service_id is not None:
        return settings
    try:
        service_id = ServiceCatalog(db, settings.inpatient_services).resolve_id(settings.pto_service_name)
    except NotFoundError:
        logger.warning("PTO service %r is not configured yet", settings.pto_service_name)
        return settings
    logger.info("Resolved PTO service %r to id %s", settings.pto_service_name, service_id)
    return settings.with_pto_service(service_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.settings = load_settings()
    db = app_db.SessionLocal()
    try:
        app.state.settings = resolve_settings(app.state.settings, db)
    except SQLAlchemyError:
        logger.exception("Could not resolve the PTO service at startup")
    finally:
        db.close()
    yield


app = FastAPI(title="Clinic Schedule Engine", lifespan=lifespan)
app.state.settings = load_settings()


@app.exception_handler(ScheduleError)
async def schedule_error_handler(_request: Request, exc: ScheduleError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def get_settings(request: Request, db: Session = Depends(get_db)) -> EngineSettings:
    settings = request.app.state.settings
    if settings.pto_service_id is None:
        settings = resolve_settings(settings, db)
        request.app.state.settings = settings
    return settings


def get_holidays(settings: EngineSettings = Depends(get_settings), db: Session = Depends(get_db)) -> HolidayPolicy:
    return HolidayPolicy(db, settings.inpatient_services)


def get_ledger(db: Session = Depends(get_db)) -> ChangeHistoryLedger:
    return ChangeHistoryLedger(db)


def get_detector(
    settings: EngineSettings = Depends(get_settings),
    holidays: HolidayPolicy = Depends(get_holidays),
    db: Session = Depends(get_db),
) -> ConflictDetector:
    return ConflictDetector(
        db,
        settings.pto_service_id,
        holidays=holidays,
        catalog=ServiceCatalog(db, settings.inpatient_services),
        evaluator=AvailabilityEvaluator(db),
    )


def get_pto_manager(settings: EngineSettings = Depends(get_settings), db: Session = Depends(get_db)) -> PTOLifecycleManager:
    if settings.pto_service_id is None:
        raise NotFoundError(f"PTO service {settings.pto_service_name!r} not found")
    return PTOLifecycleManager(
        db,
        settings.pto_service_id,
        directory=ProviderDirectory(db, settings.default_work_days),
        notifier=LoggingNotificationSender(),
        admin_email=settings.admin_email,
    )


def get_templates(
    settings: EngineSettings = Depends(get_settings),
    holidays: HolidayPolicy = Depends(get_holidays),
    ledger: ChangeHistoryLedger = Depends(get_ledger),
    db: Session = Depends(get_db),
) -> TemplateExpansionEngine:
    return TemplateExpansionEngine(db, settings.pto_service_id, holidays=holidays, ledger=ledger)


@app.get("/health")
def health() -> dict[str, bool | str]:
    return {"ok": True, "env": os.getenv("ENVIRONMENT", "local")}


@app.get("/api/holidays", response_model=list[HolidayOut])
def list_holidays(
    start: date,
    end: date,
    holidays: HolidayPolicy = Depends(get_holidays),
) -> list[HolidayOut]:
    return [
        HolidayOut(date=day, name=holiday.name, block_assignments=holiday.block_assignments)
        for day, holiday in holidays.holidays_in_range(start, end).items()
    ]


@app.get("/api/availability/evaluate", response_model=AvailabilityDecisionOut)
def evaluate_availability(
    provider_id: int,
    service_id: int,
    day: date = Query(alias="date"),
    time_block: str = Query(pattern="^(AM|PM|BOTH)$"),
    db: Session = Depends(get_db),
) -> AvailabilityDecisionOut:
    decision = AvailabilityEvaluator(db).evaluate(provider_id, service_id, day, time_block)
    return AvailabilityDecisionOut(
        decision=decision.decision,
        reason=decision.reason,
        matched_rule_ids=decision.matched_rule_ids,
    )


@app.post("/api/assignments/check", response_model=CheckResult)
def check_assignments(
    payload: BulkSubmitPayload,
    detector: ConflictDetector = Depends(get_detector),
) -> CheckResult:
    return detector.check(payload.assignments, force_override=payload.force_override)


@app.post("/api/assignments/bulk", response_model=BulkSubmitResult, status_code=status.HTTP_201_CREATED)
def create_assignments(
    payload: BulkSubmitPayload,
    detector: ConflictDetector = Depends(get_detector),
    ledger: ChangeHistoryLedger = Depends(get_ledger),
    db: Session = Depends(get_db),
) -> BulkSubmitResult:
    return submit_batch(
        db,
        payload.assignments,
        detector=detector,
        ledger=ledger,
        acknowledged_warnings=payload.acknowledged_warnings,
        force_override=payload.force_override,
    )


@app.post("/api/assignments/bulk-delete", response_model=BulkDeleteResult)
def delete_assignments(
    payload: BulkDeletePayload,
    ledger: ChangeHistoryLedger = Depends(get_ledger),
    db: Session = Depends(get_db),
) -> BulkDeleteResult:
    return delete_batch(db, payload.ids, ledger=ledger)


@app.post("/api/pto", response_model=PTOCreateResult, status_code=status.HTTP_201_CREATED)
def create_pto(payload: PTOCreatePayload, manager: PTOLifecycleManager = Depends(get_pto_manager)) -> PTOCreateResult:
    return manager.create(
        payload.provider_id,
        payload.start_date,
        payload.end_date,
        time_block=payload.time_block,
        leave_type=payload.leave_type,
        reason=payload.reason,
    )


@app.delete("/api/pto/{provider_id}/{day}", response_model=PTODeleteResult)
def delete_pto_day(
    provider_id: int,
    day: date,
    time_block: str | None = Query(default=None, pattern="^(AM|PM|BOTH|FULL)$"),
    manager: PTOLifecycleManager = Depends(get_pto_manager),
) -> PTODeleteResult:
    return manager.delete_day(provider_id, day, time_block)


@app.get("/api/pto/reconcile", response_model=list[ReconciliationGap])
def reconcile_pto(
    provider_id: int,
    start: date,
    end: date,
    manager: PTOLifecycleManager = Depends(get_pto_manager),
) -> list[ReconciliationGap]:
    return manager.reconcile(provider_id, start, end)


@app.post("/api/pto-requests", response_model=PTODecisionResult, status_code=status.HTTP_201_CREATED)
def submit_pto_request(
    payload: PTORequestPayload,
    manager: PTOLifecycleManager = Depends(get_pto_manager),
) -> PTODecisionResult:
    return manager.submit_request(
        payload.provider_id,
        payload.start_date,
        payload.end_date,
        payload.leave_type,
        time_block=payload.time_block,
        reason=payload.reason,
        requested_by=payload.requested_by,
    )


@app.get("/api/pto-requests/{request_id}", response_model=PTORequestOut)
def get_pto_request(request_id: int, manager: PTOLifecycleManager = Depends(get_pto_manager)) -> PTORequestOut:
    return PTORequestOut.model_validate(manager.get_request(request_id))


@app.post("/api/pto-requests/{request_id}/approve", response_model=PTODecisionResult)
def approve_pto_request(
    request_id: int,
    payload: ReviewPayload,
    manager: PTOLifecycleManager = Depends(get_pto_manager),
) -> PTODecisionResult:
    return manager.approve(request_id, payload.reviewer, payload.comment)


@app.post("/api/pto-requests/{request_id}/deny", response_model=PTODecisionResult)
def deny_pto_request(
    request_id: int,
    payload: ReviewPayload,
    manager: PTOLifecycleManager = Depends(get_pto_manager),
) -> PTODecisionResult:
    return manager.deny(request_id, payload.reviewer, payload.comment)


@app.get("/api/templates", response_model=list[TemplateOut])
def list_templates(engine: TemplateExpansionEngine = Depends(get_templates)) -> list[TemplateOut]:
    return [template_out(t) for t in engine.list_templates()]


@app.post("/api/templates", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
def create_template(payload: TemplateCreatePayload, engine: TemplateExpansionEngine = Depends(get_templates)) -> TemplateOut:
    return template_out(engine.create_template(payload.name, payload.type, payload.assignments))


@app.post("/api/templates/from-week", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
def create_template_from_week(
    payload: TemplateFromWeekPayload,
    engine: TemplateExpansionEngine = Depends(get_templates),
) -> TemplateOut:
    return template_out(engine.template_from_week(payload.name, payload.week_start, payload.type))


@app.get("/api/templates/{template_id}", response_model=TemplateOut)
def get_template(template_id: int, engine: TemplateExpansionEngine = Depends(get_templates)) -> TemplateOut:
    return template_out(engine.get_template(template_id))


@app.put("/api/templates/{template_id}/assignments", response_model=TemplateOut)
def replace_template_assignments(
    template_id: int,
    payload: list[TemplateAssignmentIn],
    engine: TemplateExpansionEngine = Depends(get_templates),
) -> TemplateOut:
    return template_out(engine.replace_assignments(template_id, payload))


@app.post("/api/templates/apply", response_model=TemplateApplyResult)
def apply_template(
    payload: TemplateApplyPayload,
    engine: TemplateExpansionEngine = Depends(get_templates),
) -> TemplateApplyResult:
    return engine.apply(
        payload.template_id,
        payload.start_date,
        payload.end_date,
        fill_empty_only=payload.fill_empty_only,
        clear_existing=payload.clear_existing,
    )


@app.post("/api/templates/apply-alternating", response_model=TemplateApplyResult)
def apply_alternating_templates(
    payload: AlternatingApplyPayload,
    engine: TemplateExpansionEngine = Depends(get_templates),
) -> TemplateApplyResult:
    return engine.apply_alternating(
        payload.template_ids,
        payload.pattern,
        payload.start_date,
        payload.end_date,
        fill_empty_only=payload.fill_empty_only,
        clear_existing=payload.clear_existing,
    )


@app.get("/api/history", response_model=list[HistoryEntryOut])
def recent_history(
    limit: int = Query(default=20, ge=1, le=200),
    days_back: int = Query(default=30, ge=1),
    ledger: ChangeHistoryLedger = Depends(get_ledger),
) -> list[HistoryEntryOut]:
    return [history_out(entry) for entry in ledger.recent(limit, days_back)]


@app.post("/api/history/undo", response_model=UndoResult)
def undo_change(payload: HistoryActionPayload, ledger: ChangeHistoryLedger = Depends(get_ledger)) -> UndoResult:
    return ledger.undo(payload.history_id, force=payload.force)


@app.post("/api/history/redo", response_model=RedoResult)
def redo_change(payload: HistoryActionPayload, ledger: ChangeHistoryLedger = Depends(get_ledger)) -> RedoResult:
    return ledger.redo(payload.history_id)
