from __future__ import annotations

from datetime import timezone
from email.utils import format_datetime

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask

from core.exceptions import PayloadTooLargeError
from core.file_manager import FileManager
from core.storage.models import StoredObject
from services.api.schemas import ErrorResponse, ProjectUploadResponse, StoredObjectOut
from services.api.utils import get_file_manager, run_blocking, spool_request_body

_ERRORS = {
    code: {"model": ErrorResponse}
    for code in (400, 403, 404, 413, 502, 503, 504)
}

router = APIRouter(responses=_ERRORS)


def _object_headers(obj: StoredObject) -> dict[str, str]:
    headers = {
        "Content-Length": str(obj.size),
        "Last-Modified": format_datetime(obj.last_modified.astimezone(timezone.utc), usegmt=True),
    }
    if obj.etag:
        headers["ETag"] = f'"{obj.etag}"'
    return headers


@router.put(
    "/files/{key:path}",
    response_model=StoredObjectOut,
    status_code=status.HTTP_201_CREATED,
    tags=["files"],
)
async def upload_file(
    key: str,
    request: Request,
    response: Response,
    manager: FileManager = Depends(get_file_manager),
) -> StoredObjectOut:
    limit = request.app.state.settings.api.max_upload_bytes
    body = await spool_request_body(request, limit)
    try:
        stored = await run_blocking(
            request, manager.upload, key, body, request.headers.get("content-type")
        )
    finally:
        body.close()
    response.headers["Location"] = f"/files/{stored.key}"
    return StoredObjectOut.from_object(stored)


@router.get("/files/{key:path}", response_class=StreamingResponse, tags=["files"])
async def download_file(
    key: str,
    request: Request,
    manager: FileManager = Depends(get_file_manager),
) -> StreamingResponse:
    stream = await run_blocking(request, manager.download, key)
    return StreamingResponse(
        iter(stream),
        media_type=stream.info.content_type,
        headers=_object_headers(stream.info),
        background=BackgroundTask(stream.close),
    )


@router.head("/files/{key:path}", tags=["files"])
async def stat_file(
    key: str,
    request: Request,
    manager: FileManager = Depends(get_file_manager),
) -> Response:
    obj = await run_blocking(request, manager.stat, key)
    return Response(
        status_code=status.HTTP_200_OK,
        media_type=obj.content_type,
        headers=_object_headers(obj),
    )


@router.get("/files", response_model=list[StoredObjectOut], tags=["files"])
async def list_files(
    request: Request,
    prefix: str = Query("", max_length=1024),
    manager: FileManager = Depends(get_file_manager),
) -> list[StoredObjectOut]:
    listing = manager.list(prefix)
    objects = await run_blocking(request, list, listing)
    return [StoredObjectOut.from_object(obj) for obj in objects]


@router.delete("/files/{key:path}", status_code=status.HTTP_204_NO_CONTENT, tags=["files"])
async def delete_file(
    key: str,
    request: Request,
    manager: FileManager = Depends(get_file_manager),
) -> Response:
    await run_blocking(request, manager.delete, key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/projects",
    response_model=ProjectUploadResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["projects"],
)
async def upload_project(
    request: Request,
    file: UploadFile = File(...),
    manager: FileManager = Depends(get_file_manager),
) -> ProjectUploadResponse:
    limit = request.app.state.settings.api.max_upload_bytes
    if file.size is not None and file.size > limit:
        raise PayloadTooLargeError(f"Upload exceeds {limit} bytes", {"limit_bytes": str(limit)})
    result = await run_blocking(request, manager.upload_archive, file.file)
    logger.info(
        "Project {project_id} created from {filename}",
        project_id=result.project_id,
        filename=file.filename or "<unnamed>",
    )
    return ProjectUploadResponse(project_id=result.project_id, upload_results=result.files)


@router.get("/projects/{project_id}/files", response_model=list[str], tags=["projects"])
async def list_project_files(
    project_id: str,
    request: Request,
    manager: FileManager = Depends(get_file_manager),
) -> list[str]:
    return await run_blocking(request, manager.list_project, project_id)


@router.get("/projects/{project_id}/file", response_class=PlainTextResponse, tags=["projects"])
async def read_project_file(
    project_id: str,
    request: Request,
    path: str = Query(..., min_length=1),
    manager: FileManager = Depends(get_file_manager),
) -> PlainTextResponse:
    content = await run_blocking(request, manager.read_project_file, project_id, path)
    return PlainTextResponse(content)


__all__ = ["router"]
