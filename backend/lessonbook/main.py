"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Lessonbook backend.
Controllers are intentionally thin: they accept validated requests,
delegate to services, and turn service `Result`s into responses
(not-found → 404, validation → 400, store unavailable → 503).

The entity store is built once in `create_app` and kept on
`app.state`; services are constructed per request around it.

Endpoints implemented:
- GET /health
- GET/POST /api/students, GET/PUT/DELETE /api/students/{id}
- GET /api/students/search/{query}
- POST /api/lesson-packages, PUT /api/lesson-packages/{id}
- GET /api/lessons, GET /api/lessons/today, POST /api/lessons
- PUT/DELETE /api/lessons/{id}
- POST /api/lessons/{id}/complete, POST /api/lessons/{id}/uncomplete
- GET /api/stats
- GET /api/documents/student/{student_id}, POST /api/documents
- DELETE /api/documents/{id}
"""

from datetime import datetime
from typing import Optional
from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
import json
import logging
import time
import uuid
from . import services
from .config import Settings
from .database import build_store
from .ledger import CreditLedger
from .results import ErrorKind, Result
from .schemas import (
    DocumentIn,
    LessonIn,
    LessonPackageIn,
    LessonPackageUpdate,
    LessonUpdate,
    StudentUpdate,
    StudentWithPackageIn,
    to_local_naive,
)
from .utils.keyed_lock import KeyedLock

logger = logging.getLogger("lessonbook.api")

_FAILURE_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.INVARIANT: 500,
}


def unwrap(result: Result, not_found: str = "Not found"):
    """Return the found value or raise the matching HTTPException."""
    if result.is_found:
        return result.value
    if result.is_not_found:
        raise HTTPException(status_code=404, detail={"message": not_found})
    detail = {"message": str(result.error)}
    if result.kind == ErrorKind.VALIDATION:
        detail["errors"] = result.error.violations
    else:
        logger.error("request_failed %s", json.dumps({"kind": result.kind.value, "error": str(result.error)}))
    raise HTTPException(status_code=_FAILURE_STATUS[result.kind], detail=detail)


def get_store(request: Request):
    return request.app.state.store


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_email_locks(request: Request) -> KeyedLock:
    return request.app.state.email_locks


def student_service(store=Depends(get_store), locks: KeyedLock = Depends(get_email_locks)) -> services.StudentService:
    return services.StudentService(store, locks=locks)


def package_service(store=Depends(get_store)) -> services.LessonPackageService:
    return services.LessonPackageService(store)


def lesson_service(store=Depends(get_store), ledger: CreditLedger = Depends(get_ledger)) -> services.LessonService:
    return services.LessonService(store, ledger=ledger)


def document_service(store=Depends(get_store)) -> services.DocumentService:
    return services.DocumentService(store)


def stats_service(store=Depends(get_store)) -> services.StatsService:
    return services.StatsService(store)


def create_app(settings: Optional[Settings] = None, store=None) -> FastAPI:
    """Build the application around one entity store.

    The store comes from `settings` (see `database.build_store`) unless
    an instance is passed explicitly.
    """
    settings = settings or Settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(title="Lessonbook API")
    app.state.settings = settings
    app.state.store = store or build_store(settings)
    app.state.ledger = CreditLedger(app.state.store)
    app.state.email_locks = KeyedLock()

    # Wide-open CORS keeps a local frontend dev server working without extra config.
    if settings.ALLOW_DEV_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
        request.state.request_id = req_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
            logger.exception(
                "request_failed %s",
                json.dumps({"request_id": req_id, "path": request.url.path, "method": request.method, "duration_ms": elapsed_ms}),
            )
            raise
        response.headers["X-Request-ID"] = req_id
        if request.url.path.startswith("/api"):
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
            logger.info(
                "request_done %s",
                json.dumps({
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                }),
            )
        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Students

    @app.get("/api/students")
    def list_students(svc: services.StudentService = Depends(student_service)):
        return unwrap(svc.list_with_packages())

    @app.get("/api/students/search/{query}")
    def search_students(query: str, svc: services.StudentService = Depends(student_service)):
        return unwrap(svc.search(query))

    @app.get("/api/students/{student_id}")
    def get_student(student_id: str, svc: services.StudentService = Depends(student_service)):
        return unwrap(svc.get_detail(student_id), "Student not found")

    @app.post("/api/students", status_code=201)
    def create_student(payload: StudentWithPackageIn, svc: services.StudentService = Depends(student_service)):
        return unwrap(svc.create_with_package(payload))

    @app.put("/api/students/{student_id}")
    def update_student(student_id: str, payload: StudentUpdate, svc: services.StudentService = Depends(student_service)):
        return unwrap(svc.update(student_id, payload), "Student not found")

    @app.delete("/api/students/{student_id}", status_code=204)
    def delete_student(student_id: str, svc: services.StudentService = Depends(student_service)):
        unwrap(svc.delete(student_id), "Student not found")
        return Response(status_code=204)

    # Lesson packages

    @app.post("/api/lesson-packages", status_code=201)
    def create_package(payload: LessonPackageIn, svc: services.LessonPackageService = Depends(package_service)):
        return unwrap(svc.create(payload))

    @app.put("/api/lesson-packages/{package_id}")
    def update_package(package_id: str, payload: LessonPackageUpdate,
                       svc: services.LessonPackageService = Depends(package_service)):
        return unwrap(svc.update(package_id, payload), "Lesson package not found")

    # Lessons

    @app.get("/api/lessons/today")
    def todays_lessons(svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.today_enriched())

    @app.get("/api/lessons")
    def lessons_in_range(start: datetime, end: datetime, svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.in_range(to_local_naive(start), to_local_naive(end)))

    @app.post("/api/lessons", status_code=201)
    def create_lesson(payload: LessonIn, svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.create(payload))

    @app.put("/api/lessons/{lesson_id}")
    def update_lesson(lesson_id: str, payload: LessonUpdate, svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.update(lesson_id, payload), "Lesson not found")

    @app.post("/api/lessons/{lesson_id}/complete")
    def complete_lesson(lesson_id: str, svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.complete(lesson_id), "Lesson not found")

    @app.post("/api/lessons/{lesson_id}/uncomplete")
    def uncomplete_lesson(lesson_id: str, svc: services.LessonService = Depends(lesson_service)):
        return unwrap(svc.uncomplete(lesson_id), "Lesson not found")

    @app.delete("/api/lessons/{lesson_id}", status_code=204)
    def delete_lesson(lesson_id: str, svc: services.LessonService = Depends(lesson_service)):
        unwrap(svc.delete(lesson_id), "Lesson not found")
        return Response(status_code=204)

    # Stats

    @app.get("/api/stats")
    def get_stats(svc: services.StatsService = Depends(stats_service)):
        return unwrap(svc.stats())

    # Documents

    @app.get("/api/documents/student/{student_id}")
    def student_documents(student_id: str, svc: services.DocumentService = Depends(document_service)):
        return unwrap(svc.list_for_student(student_id))

    @app.post("/api/documents", status_code=201)
    def create_document(payload: DocumentIn, svc: services.DocumentService = Depends(document_service)):
        return unwrap(svc.create(payload))

    @app.delete("/api/documents/{document_id}", status_code=204)
    def delete_document(document_id: str, svc: services.DocumentService = Depends(document_service)):
        unwrap(svc.delete(document_id), "Document not found")
        return Response(status_code=204)

    return app
