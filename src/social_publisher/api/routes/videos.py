"""Video upload endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, File, UploadFile, status

from social_publisher.api.deps import OwnerIdDep
from social_publisher.api.schemas import ApiModel
from social_publisher.logging import get_logger
from social_publisher.services import video_ingestion

router = APIRouter(prefix="/videos", tags=["Videos"])
logger = get_logger(__name__)


class VideoUploadResponse(ApiModel):
    """Stored video with whatever metadata probing produced."""

    path: str
    filename: str
    size: int
    mime_type: str
    url: str
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    thumbnail_path: str | None = None
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = {}


@router.post(
    "",
    response_model=VideoUploadResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Upload video",
    description="Store a video, probe it and generate a thumbnail when possible.",
)
def upload_video(
    owner_id: OwnerIdDep,
    video: Annotated[UploadFile, File(description="Video file")],
    thumbnail: Annotated[UploadFile | None, File(description="Optional thumbnail image")] = None,
) -> VideoUploadResponse:
    """Upload a video. Probing and thumbnail failures never fail the upload."""
    stored = video_ingestion.ingest(video.filename or "upload.mp4", video.file, video.content_type)
    metadata = video_ingestion.extract_metadata(video_ingestion.absolute_path(stored.path))

    # A user-supplied thumbnail wins over a generated one
    if thumbnail is not None and thumbnail.filename:
        thumbnail_path = video_ingestion.store_thumbnail(thumbnail.filename, thumbnail.file)
    else:
        thumbnail_path = video_ingestion.generate_thumbnail(
            video_ingestion.absolute_path(stored.path), metadata.duration
        )

    logger.info(
        "video_uploaded",
        owner_id=owner_id,
        path=stored.path,
        size=stored.size,
        probed=metadata.duration is not None,
        thumbnail=thumbnail_path is not None,
    )
    return VideoUploadResponse(
        path=stored.path,
        filename=stored.filename,
        size=stored.size,
        mime_type=stored.mime_type,
        url=stored.url,
        duration=metadata.duration,
        width=metadata.width,
        height=metadata.height,
        thumbnail_path=thumbnail_path,
        thumbnail_url=video_ingestion.media_url(thumbnail_path) if thumbnail_path else None,
        metadata=metadata.to_dict(),
    )
