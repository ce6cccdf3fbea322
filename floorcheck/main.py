from fastapi import FastAPI, Request, Depends, BackgroundTasks
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Any, Optional
from pydantic import BaseModel
from datetime import datetime
from contextlib import asynccontextmanager
import logging

from . import config
from .database import get_db, engine, init_db, check_db_connection, SessionLocal
from .exceptions import (
    ActiveRunConflictError,
    CompletionBlockedError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    TemplateError,
    ValidationError,
)
from .compliance import list_compliance, recent_activity
from .models import Machine
from .runs import (
    abort_run,
    answer_to_dict,
    complete_run,
    create_run,
    get_run,
    run_progress,
    run_to_dict,
    submit_answer,
)
from .telegram import telegram
from .utils import as_utc, utcnow
from .templates import (
    activate_template,
    create_template,
    deprecate_template,
    get_template,
    template_to_dict,
    update_template,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

if config.LOG_FILE:
    file_handler = logging.FileHandler(config.LOG_FILE)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    logging.getLogger().addHandler(file_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Application startup initiated")
    try:
        logger.info("Creating database tables...")
        init_db()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error during database initialization: {str(e)}", exc_info=True)
        raise

    yield

    logger.info("Application shutdown initiated")
    engine.dispose()
    logger.info("Database connections disposed")


app = FastAPI(title="Floorcheck Inspection Engine", lifespan=lifespan)


# Pydantic models
class TemplateCreateRequest(BaseModel):
    name: str
    type: str
    json_definition: Any = None
    machine_id: Optional[str] = None
    frequency: Optional[str] = None
    created_by: Optional[str] = None


class TemplateUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    json_definition: Any = None
    machine_id: Optional[str] = None
    frequency: Optional[str] = None


class RunCreateRequest(BaseModel):
    template_id: str
    machine_id: str
    user_id: str
    job_number: Optional[str] = None
    part_number: Optional[str] = None
    program_name: Optional[str] = None
    notes: Optional[str] = None


class AnswerRequest(BaseModel):
    value: Any = None
    comment: Optional[str] = None
    photo_url: Optional[str] = None


class AbortRequest(BaseModel):
    reason: Optional[str] = None


# Error mapping
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"{exc.entity.capitalize()} not found"})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "error": "validation_error", "item_id": exc.item_id},
    )


@app.exception_handler(CompletionBlockedError)
async def completion_blocked_handler(request: Request, exc: CompletionBlockedError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": "Checklist is not finished",
            "error": "completion_blocked",
            "unanswered_item_ids": exc.unanswered_item_ids,
            "missing_photo_item_ids": exc.missing_photo_item_ids,
        },
    )


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={"detail": InvalidTransitionError.public_message, "error": "invalid_transition"},
    )


@app.exception_handler(ActiveRunConflictError)
async def active_run_conflict_handler(request: Request, exc: ActiveRunConflictError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "error": "active_run_conflict", "run_id": exc.run_id},
    )


@app.exception_handler(TemplateError)
async def template_error_handler(request: Request, exc: TemplateError):
    return JSONResponse(status_code=422, content={"detail": exc.message, "error": "template_error"})


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": "scheduling_error"})


# Health check endpoints
@app.get("/up")
async def up():
    return {"status": "ok"}


@app.get("/health")
def health_check():
    """Health check that tests the database connection."""
    db = SessionLocal()
    try:
        is_connected = check_db_connection(db)
    finally:
        db.close()
    if not is_connected:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "timestamp": utcnow().isoformat()},
        )
    return {"status": "healthy", "database": "connected", "timestamp": utcnow().isoformat()}


# Templates
@app.post("/api/templates", status_code=201)
def post_template(request: TemplateCreateRequest, db: Session = Depends(get_db)):
    template = create_template(
        db,
        name=request.name,
        type=request.type,
        definition=request.json_definition,
        machine_id=request.machine_id,
        frequency=request.frequency,
        created_by=request.created_by,
    )
    return template_to_dict(template)


@app.get("/api/templates/{template_id}")
def read_template(template_id: str, db: Session = Depends(get_db)):
    return template_to_dict(get_template(db, template_id))


@app.put("/api/templates/{template_id}")
def put_template(template_id: str, request: TemplateUpdateRequest, db: Session = Depends(get_db)):
    changes = request.model_dump(exclude_unset=True)
    template = update_template(
        db,
        template_id,
        name=changes.get("name"),
        type=changes.get("type"),
        definition=changes.get("json_definition"),
        machine_id=changes.get("machine_id", ...),
        frequency=changes.get("frequency", ...),
    )
    return template_to_dict(template)


@app.post("/api/templates/{template_id}/activate")
def post_activate_template(template_id: str, db: Session = Depends(get_db)):
    return template_to_dict(activate_template(db, template_id))


@app.post("/api/templates/{template_id}/deprecate")
def post_deprecate_template(template_id: str, db: Session = Depends(get_db)):
    return template_to_dict(deprecate_template(db, template_id))


# Runs
def _run_payload(run) -> dict:
    payload = run_to_dict(run)
    payload["answers"] = [answer_to_dict(answer) for answer in run.answers]
    payload["progress"] = run_progress(run)
    return payload


@app.post("/api/runs", status_code=201)
def post_run(request: RunCreateRequest, db: Session = Depends(get_db)):
    run = create_run(
        db,
        template_id=request.template_id,
        machine_id=request.machine_id,
        user_id=request.user_id,
        job_number=request.job_number,
        part_number=request.part_number,
        program_name=request.program_name,
        notes=request.notes,
    )
    return _run_payload(run)


@app.get("/api/runs/{run_id}")
def read_run(run_id: str, db: Session = Depends(get_db)):
    return _run_payload(get_run(db, run_id))


@app.put("/api/runs/{run_id}/answers/{item_id}")
def put_answer(run_id: str, item_id: str, request: AnswerRequest, db: Session = Depends(get_db)):
    answer = submit_answer(
        db,
        run_id,
        item_id,
        request.value,
        comment=request.comment,
        photo_url=request.photo_url,
    )
    return answer_to_dict(answer)


@app.post("/api/runs/{run_id}/complete")
def post_complete(run_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    run = complete_run(db, run_id)
    payload = _run_payload(run)

    failed_critical = payload["progress"]["failed_critical_items"]
    if failed_critical:
        definition = run.template.definition
        labels = [definition.get_item(item_id).label for item_id in failed_critical]
        machine = db.get(Machine, run.machine_id)
        background_tasks.add_task(
            telegram.notify_critical_failures,
            template_name=run.template.name,
            machine_name=machine.name if machine else run.machine_id,
            user_id=run.user_id,
            item_labels=labels,
            when=as_utc(run.completed_at),
        )
    return payload


@app.post("/api/runs/{run_id}/abort")
def post_abort(run_id: str, request: Optional[AbortRequest] = None, db: Session = Depends(get_db)):
    run = abort_run(db, run_id, reason=request.reason if request else None)
    return _run_payload(run)


# Compliance
@app.get("/api/compliance")
def read_compliance(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    activity: bool = False,
    db: Session = Depends(get_db),
):
    """Live compliance projection; recomputed on every call."""
    entries = list_compliance(db, since=since, until=until)
    response = {"checklists": [entry.to_dict() for entry in entries]}
    if activity:
        response["activity"] = recent_activity(db)
    return response
