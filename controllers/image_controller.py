from fastapi import Request, UploadFile, HTTPException
from fastapi.responses import Response
from typing import Dict, Any, List, Optional
import logging

from models.image_metadata import EnrichmentState, is_features_complete, is_ocr_complete
from models.image_record import ImageRecord, PageWindow
from services.image_service import UploadFileData
from services.metadata_codec import decode
from utils.errors import (
    Conflict,
    CorruptMetadata,
    DeleteFailed,
    EnrichmentFailed,
    ImageServiceError,
    NotFound,
    OutOfRange,
    Unavailable,
    VendorError,
)
from utils.media_validation import media_type_for


_STATUS_BY_ERROR = (
    (NotFound, 404),
    (Conflict, 409),
    (OutOfRange, 400),
    (CorruptMetadata, 422),
    (Unavailable, 503),
    (VendorError, 502),
    (EnrichmentFailed, 502),
    (DeleteFailed, 502),
)


def to_http_error(exc: Exception) -> HTTPException:
    """Translate a domain error (or a validation ValueError) into an HTTPException."""
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    if isinstance(exc, ImageServiceError):
        return HTTPException(status_code=500, detail=str(exc))
    logging.error("Unexpected error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def serialize_record(record: ImageRecord, url: Optional[str] = None) -> Dict[str, Any]:
    """Render a record with its decoded metadata bag and derived enrichment state.

    A record whose metadata cannot be decoded is still listed; its bag is
    reported as `None` with `metadata_error` set.
    """
    body = record.to_dict()
    body["url"] = url
    try:
        bag = decode(record.metadata)
    except CorruptMetadata as exc:
        body.update(metadata=None, metadata_error=str(exc), enrichment_state=None)
        return body

    ocr_done = is_ocr_complete(bag)
    features_done = is_features_complete(bag)
    body.update(
        metadata=bag,
        ocr_complete=ocr_done,
        features_complete=features_done,
        enrichment_state=EnrichmentState.from_flags(ocr_done, features_done).value,
    )
    return body


def _services(request: Request):
    return request.app.state.services


async def _serialize_many(request: Request, records: List[ImageRecord]) -> List[Dict[str, Any]]:
    urls = await _services(request).image_manager.display_urls(records)
    return [serialize_record(r, urls.get(r.id)) for r in records]


async def upload_images(request: Request, owner_id: Optional[str], files: List[UploadFile]) -> Dict[str, Any]:
    """Store a batch of uploaded images for `owner_id`.

    Args:
        request: FastAPI Request (used to access app.state.services).
        owner_id: Authenticated user id taken from the `X-User-Id` header.
        files: Uploaded image files, stored in order.

    Returns:
        A dict with the created records under `images`.

    Raises:
        HTTPException(401) if no user id was supplied; HTTPException(400) if a
        file is empty or not an image.
    """
    if not owner_id or not owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")

    batch = [
        UploadFileData(filename=f.filename or "upload", content_type=f.content_type, data=await f.read())
        for f in files
    ]
    try:
        created = await _services(request).image_manager.upload(owner_id.strip(), batch)
    except Exception as exc:
        raise to_http_error(exc)
    return {"images": await _serialize_many(request, created)}


async def list_images(request: Request, page: int = 1, size: Optional[int] = None) -> Dict[str, Any]:
    """Return one page of images, newest first, with display URLs.

    Records whose URL could not be signed are returned with `url` set to None.
    """
    try:
        window: PageWindow = await _services(request).image_manager.list_page(page, size)
    except Exception as exc:
        raise to_http_error(exc)
    return {
        "page": window.page,
        "page_size": window.page_size,
        "total_count": window.total_count,
        "total_pages": window.total_pages,
        "images": await _serialize_many(request, window.records),
    }


async def get_image(request: Request, image_id: int) -> Dict[str, Any]:
    services = _services(request)
    try:
        record = await services.image_service.get(int(image_id))
    except Exception as exc:
        raise to_http_error(exc)
    return (await _serialize_many(request, [record]))[0]


async def delete_image(request: Request, image_id: int) -> Dict[str, Any]:
    """Delete an image's blob and record.

    Raises:
        HTTPException(404) if the image does not exist; HTTPException(502) if
        either part could not be removed.
    """
    try:
        record = await _services(request).image_manager.delete(int(image_id))
    except Exception as exc:
        raise to_http_error(exc)
    return {"deleted": record.id}


async def run_enrichment(request: Request, image_id: int, kind) -> Dict[str, Any]:
    """Run one enrichment job (`ocr` or `features`) and return the updated record.

    Raises:
        HTTPException(409) if the same job is already running for this image.
    """
    try:
        updated = await _services(request).image_manager.run_job(kind, int(image_id))
    except Exception as exc:
        raise to_http_error(exc)
    return serialize_record(updated)


async def signed_urls(request: Request, object_names: List[str]) -> Dict[str, Any]:
    """Resolve signed URLs for many object names; failed names are left out."""
    urls = await _services(request).url_cache.resolve_all(object_names)
    return {"urls": urls}


async def serve_blob(request: Request, name: str, expires: int, signature: str) -> Response:
    """Return the bytes of a locally stored blob after checking its URL signature.

    Raises:
        HTTPException(404) if the storage backend does not serve blobs itself.
        HTTPException(403) if the signature is invalid or expired.
    """
    blob_store = _services(request).blob_store
    verify = getattr(blob_store, "verify", None)
    if verify is None:
        raise HTTPException(status_code=404, detail="Blobs are not served by this backend")
    try:
        valid = verify(name, expires, signature)
    except ValueError:
        valid = False
    if not valid:
        raise HTTPException(status_code=403, detail="Invalid or expired signature")

    try:
        data = await blob_store.get(name)
    except Exception as exc:
        raise to_http_error(exc)

    return Response(content=data, media_type=media_type_for(name))


async def sweep_orphans(request: Request) -> Dict[str, Any]:
    try:
        removed = await _services(request).sweeper.sweep()
    except Exception as exc:
        raise to_http_error(exc)
    return {"removed": removed}
