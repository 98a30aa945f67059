"""HTTP boundary: FastAPI routes, request schemas and error mapping."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from .config_loader import AppConfig
from .errors import ConflictError, NotFoundError, UpstreamStorageError, ValidationError
from .mongo_repository import MongoContactRepository
from .repository import ContactRepository, InMemoryContactRepository
from .service import ContactService

logger = logging.getLogger(__name__)


class ContactCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str
    email: str
    phone: str
    avatar: Optional[str] = None


class ContactUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None


def build_repository(config: AppConfig) -> ContactRepository:
    if config.storage.backend == "memory":
        logger.warning("Using the in-memory contact store; data is lost on restart")
        return InMemoryContactRepository()
    repository = MongoContactRepository.connect(
        config.storage.uri, config.storage.database, config.storage.collection
    )
    repository.ensure_indexes()
    return repository


def get_service(request: Request) -> ContactService:
    return request.app.state.service


router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("")
def list_contacts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    service: ContactService = Depends(get_service),
):
    return service.list(page, limit).to_dict()


@router.get("/search")
def search_contacts(
    q: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    service: ContactService = Depends(get_service),
):
    return service.search(q, page, limit).to_dict()


@router.get("/stats")
def contact_stats(service: ContactService = Depends(get_service)):
    return service.stats().to_dict()


@router.get("/export-csv")
def export_contacts(service: ContactService = Depends(get_service)):
    filename = service.config.export.filename
    return Response(
        content=service.export_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import-csv")
def import_contacts(
    file: Optional[UploadFile] = File(None),
    service: ContactService = Depends(get_service),
):
    if file is None:
        raise ValidationError("No file uploaded.", fields=["file"])
    summary = service.import_csv(file.file.read())
    return summary.to_dict()


@router.post("/initialize-normalized")
def initialize_normalized(service: ContactService = Depends(get_service)):
    updated = service.initialize_normalized()
    return {"message": f"{updated} contacts updated.", "updated": updated}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_contact(body: ContactCreate, service: ContactService = Depends(get_service)):
    return service.create(body.name, body.email, body.phone, body.avatar).to_dict()


@router.get("/{contact_id}")
def get_contact(contact_id: str, service: ContactService = Depends(get_service)):
    return service.get(contact_id).to_dict()


@router.put("/{contact_id}")
def update_contact(
    contact_id: str, body: ContactUpdate, service: ContactService = Depends(get_service)
):
    return service.update(contact_id, body.model_dump(exclude_unset=True)).to_dict()


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact(contact_id: str, service: ContactService = Depends(get_service)):
    service.delete(contact_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("")
def delete_all_contacts(service: ContactService = Depends(get_service)):
    count = service.delete_all()
    return {"message": "All contacts deleted.", "deletedCount": count}


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"error": message}
    payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, exc.message, fields=exc.fields)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        return _error(
            status.HTTP_400_BAD_REQUEST,
            f"Invalid or missing field(s): {', '.join(fields)}",
            fields=fields,
        )

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return _error(status.HTTP_409_CONFLICT, exc.message, field=exc.field)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Contact not found.")

    @app.exception_handler(UpstreamStorageError)
    async def _storage(request: Request, exc: UpstreamStorageError):
        logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal storage error.")


def create_app(
    config: Optional[AppConfig] = None, repository: Optional[ContactRepository] = None
) -> FastAPI:
    config = config or AppConfig()
    app = FastAPI(title="Address Book")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if repository is None:
        repository = build_repository(config)
    app.state.service = ContactService(repository, config)
    app.include_router(router)
    _register_error_handlers(app)
    return app
