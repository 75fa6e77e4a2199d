from contextlib import asynccontextmanager
from typing import List, Optional
import logging
from fastapi import FastAPI, File, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from domain.config import Settings, load_settings
from domain.constants import ServiceConfig
from domain.dependencies import Dependencies, build_storage
from domain.orchestrator import StorageOrchestrator
from infra.errors import (
    AlreadyExistsError,
    NotFoundError,
    StorageBackendError,
    StorageSyncError,
    ValidationError,
)
from infra.log_config import configure_logging
from infra.redis import RedisBroker

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AlreadyExistsError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StorageBackendError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

def _lifespan(settings: Optional[Settings]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or load_settings()
        listener = configure_logging(resolved.logging.level, resolved.logging.shipping_url)
        broker = RedisBroker.create(
            resolved.broker.url,
            resolved.broker.group,
            producer_config=resolved.broker.producer
        )
        app.state.orchestrator = StorageOrchestrator(Dependencies(
            file_storage=build_storage(resolved),
            broker=broker,
            topic=resolved.broker.topic
        ))
        logger.info(f"{ServiceConfig.API_NAME} publishing to {resolved.broker.topic}")
        try:
            yield
        finally:
            await broker.close()
            if listener is not None:
                listener.stop()
    return lifespan

def create_app(
    orchestrator: Optional[StorageOrchestrator] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the HTTP front end. Tests pass a ready orchestrator; otherwise one
    is assembled from settings when the app starts.
    """
    app = FastAPI(
        title="Storage Sync API",
        lifespan=None if orchestrator is not None else _lifespan(settings)
    )
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageSyncError)
    async def storage_error_handler(request: Request, exc: StorageSyncError):
        code = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=code, content={"error": str(exc)})

    def get_orchestrator(request: Request) -> StorageOrchestrator:
        return request.app.state.orchestrator

    @app.post("/upload/{path:path}", status_code=status.HTTP_201_CREATED)
    async def upload_file(
        request: Request,
        path: str,
        overwrite: bool = False,
        file: Optional[UploadFile] = File(None)
    ):
        if file is None:
            raise ValidationError("Invalid file: multipart field 'file' is required")
        content = await file.read()
        await get_orchestrator(request).upload(
            path,
            content,
            overwrite=overwrite,
            filename=file.filename,
            content_type=file.content_type,
            user_id=request.headers.get("X-User-Id")
        )
        return Response(status_code=status.HTTP_201_CREATED)

    @app.delete("/delete/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_file(request: Request, path: str):
        await get_orchestrator(request).delete(path, user_id=request.headers.get("X-User-Id"))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/read/{path:path}")
    async def read_file(request: Request, path: str):
        content = await get_orchestrator(request).read(path)
        return Response(content=content, media_type="application/octet-stream")

    @app.post("/directory/{path:path}", status_code=status.HTTP_201_CREATED)
    async def create_directory(request: Request, path: str):
        await get_orchestrator(request).create_directory(path, user_id=request.headers.get("X-User-Id"))
        return Response(status_code=status.HTTP_201_CREATED)

    @app.delete("/directory/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_directory(request: Request, path: str):
        await get_orchestrator(request).delete_directory(path, user_id=request.headers.get("X-User-Id"))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/list", response_model=List[str])
    @app.get("/list/{path:path}", response_model=List[str])
    async def list_files(request: Request, path: str = "."):
        return await get_orchestrator(request).list(path or ".")

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": ServiceConfig.API_NAME}

    return app

app = create_app()

if __name__ == "__main__":
    settings = load_settings()
    uvicorn.run(create_app(settings=settings), host=settings.server.host, port=settings.server.port)
