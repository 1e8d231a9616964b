"""
Presence Backend API
====================
Kiosk attendance by face recognition.

Flow:
1. Kiosk posts a camera image to /presence
2. Remote recognition service resolves it to a person id
3. Time of day decides check-in (on time / late) or check-out
4. One attendance record per person per day is written

Persons and classes are managed through /users and /classes; enrollment
photos are forwarded to the recognition service and served under /files.
"""

import logging
import traceback
from typing import Optional, Iterable

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from . import config
from .container import Services, build_services
from .database.models import Person
from .errors import AppError, BadRequestError, ValidationFailed
from .photo_storage import PhotoStorage, check_image
from .recognition.client import ImageUpload
from .schemas import ClassCreate, ClassUpdate, PersonCreate, PersonUpdate

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def person_payload(person: Person, storage: PhotoStorage) -> dict:
    data = person.to_dict()
    data["photo_url"] = storage.url_for(person.photo)
    return data


async def read_image(upload: Optional[UploadFile], allowed_types: Optional[Iterable[str]] = None) -> Optional[ImageUpload]:
    """Read and check an uploaded image; None if nothing was uploaded."""
    if upload is None:
        return None
    content = await upload.read()
    if not content and not upload.filename:
        # Browsers submit an empty part for an untouched file input
        return None
    image = ImageUpload(
        content=content,
        filename=upload.filename or "photo",
        content_type=upload.content_type or "application/octet-stream"
    )
    check_image(image, allowed_types=allowed_types)
    return image


# ============== Error Handling ==============

def _error_response(request: Request, status_code: int, message: str, error_type: str,
                    exc: Exception = None, **extra) -> JSONResponse:
    body = {"message": message, "type": error_type, **extra}
    if request.app.state.debug and exc is not None:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body)


def _validation_failure(errors: list) -> ValidationFailed:
    details = [
        {"path": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in errors
    ]
    return ValidationFailed(details[0]["message"] if details else None, errors=details)


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        return _error_response(request, exc.status_code, exc.message, exc.type, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        failure = _validation_failure(exc.errors())
        return _error_response(request, failure.status_code, failure.message, failure.type, exc, errors=failure.errors)

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        failure = _validation_failure(exc.errors())
        return _error_response(request, failure.status_code, failure.message, failure.type, exc, errors=failure.errors)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=exc)
        return _error_response(request, 500, "Internal server error", "Internal", exc)


# ============== Health ==============

@router.get("/")
async def root(services: Services = Depends(get_services)):
    """Health check endpoint."""
    health_check = getattr(services.identity, "health_check", None)
    recognition = await health_check() if health_check else {"status": "unknown"}
    return {
        "status": "online",
        "service": "Presence Backend",
        "database": services.db.get_stats(),
        "recognition_service": recognition,
        "pending_cleanups": services.enrollment.pending_cleanups
    }


# ============== Users ==============

@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    services: Services = Depends(get_services)
):
    persons, last_page = services.directory.list_persons(page, limit or services.attendance_service.page_size)
    return {
        "data": [person_payload(p, services.storage) for p in persons],
        "page": page,
        "lastPage": last_page
    }


@router.get("/users/{person_id}")
async def get_user(person_id: int, services: Services = Depends(get_services)):
    person = services.directory.require_person(person_id)
    return {"data": person_payload(person, services.storage)}


@router.post("/users", status_code=201)
async def create_user(
    name: str = Form(...),
    email: str = Form(...),
    class_id: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services)
):
    """Enroll a person; the photo, if any, is registered with the face index."""
    data = PersonCreate(name=name, email=email, class_id=class_id)
    image = await read_image(photo, allowed_types=config.ALLOWED_PHOTO_TYPES)
    stored = services.storage.save(image) if image else None

    person = await services.enrollment.create_person(data, stored)
    return {"data": person_payload(person, services.storage), "message": "User created"}


@router.put("/users/{person_id}")
async def update_user(
    request: Request,
    person_id: int,
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    class_id: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services)
):
    """Partial update; only the submitted fields change."""
    submitted = {key: value for key, value in (("name", name), ("email", email)) if value is not None}
    # An empty class_id clears the class, but FastAPI folds "" into the default
    form = await request.form()
    if "class_id" in form:
        submitted["class_id"] = class_id if class_id is not None else form["class_id"]
    data = PersonUpdate(**submitted)
    image = await read_image(photo, allowed_types=config.ALLOWED_PHOTO_TYPES)
    stored = services.storage.save(image) if image else None

    person = await services.enrollment.update_person(person_id, data, stored)
    return {"data": person_payload(person, services.storage), "message": "User updated"}


@router.delete("/users/{person_id}", status_code=204)
async def delete_user(person_id: int, services: Services = Depends(get_services)):
    await services.enrollment.delete_person(person_id)
    return Response(status_code=204)


# ============== Classes ==============

@router.get("/classes")
async def list_classes(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    services: Services = Depends(get_services)
):
    classes, last_page = services.directory.list_classes(page, limit or services.attendance_service.page_size)
    return {"data": [c.to_dict() for c in classes], "page": page, "lastPage": last_page}


@router.get("/classes/{class_id}")
async def get_class(class_id: int, services: Services = Depends(get_services)):
    data = services.directory.get_class_with_students(class_id)
    for student in data["students"]:
        student["photo_url"] = services.storage.url_for(student["photo"])
    return {"data": data}


@router.post("/classes", status_code=201)
async def create_class(body: ClassCreate, services: Services = Depends(get_services)):
    classroom = services.directory.create_class(body.name)
    return {"data": classroom.to_dict(), "message": "Class created"}


@router.put("/classes/{class_id}")
async def update_class(class_id: int, body: ClassUpdate, services: Services = Depends(get_services)):
    classroom = services.directory.update_class(class_id, body.name)
    return {"data": classroom.to_dict(), "message": "Class updated"}


@router.delete("/classes/{class_id}", status_code=204)
async def delete_class(class_id: int, services: Services = Depends(get_services)):
    services.directory.delete_class(class_id)
    return Response(status_code=204)


# ============== Attendance ==============

@router.post("/presence")
async def record_presence(
    image: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services)
):
    """
    Main kiosk endpoint.

    The same image means check-in or check-out depending on the time of
    day; repeated recognitions return the stored record unchanged.
    """
    upload = await read_image(image)
    if upload is None:
        raise BadRequestError("No image file provided")

    result = await services.attendance_service.record_attendance(upload)
    data = result.to_dict()
    data["user"]["photo_url"] = services.storage.url_for(result.person.photo)
    return {"data": data, "message": result.message}


@router.get("/presence/today")
async def list_today_presence(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    services: Services = Depends(get_services)
):
    records, last_page = services.attendance_service.get_today_records(page, limit)
    return {"data": records, "page": page, "lastPage": last_page}


# ============== Application ==============

def create_app(services: Optional[Services] = None, debug: Optional[bool] = None) -> FastAPI:
    """Build the FastAPI application around a service container."""
    services = services or build_services()

    app = FastAPI(
        title="Presence Backend API",
        description="Face recognition kiosk attendance: enrollment, check-in and check-out",
        version="1.0.0"
    )
    app.state.services = services
    app.state.debug = config.DEBUG if debug is None else debug

    # CORS middleware for the kiosk and admin frontends
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(router)
    app.mount("/files", StaticFiles(directory=str(services.storage.root)), name="files")

    @app.on_event("startup")
    async def startup_event():
        window = services.attendance_service.window
        logger.info("=" * 60)
        logger.info("Starting Presence Backend")
        logger.info(f"Check-in threshold: {window.checkin_threshold}")
        logger.info(f"Check-out threshold: {window.checkout_threshold}")
        logger.info(f"Photo storage: {services.storage.root}")
        logger.info("=" * 60)

    @app.on_event("shutdown")
    async def shutdown_event():
        await services.enrollment.wait_for_cleanup()
        close = getattr(services.identity, "close", None)
        if close:
            await close()
        logger.info("Presence Backend stopped")

    return app


def main():
    import uvicorn
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
