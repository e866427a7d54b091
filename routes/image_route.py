from fastapi import APIRouter, File, Header, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel
from typing import List, Optional

from controllers.image_controller import (
	delete_image,
	get_image,
	list_images,
	run_enrichment,
	signed_urls,
	sweep_orphans,
	upload_images,
)
from models.image_metadata import JobKind

router = APIRouter()


class SignedUrlRequest(BaseModel):
	object_names: List[str] = []


@router.post("/images")
async def post_images(
	request: Request,
	files: List[UploadFile] = File(...),
	x_user_id: Optional[str] = Header(None),
):
	"""Upload one or more images for the calling user."""
	try:
		return await upload_images(request, x_user_id, files)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/images")
async def get_images(request: Request, page: int = Query(1), size: Optional[int] = Query(None)):
	"""Return one page of images, newest first."""
	try:
		return await list_images(request, page, size)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/images/signed-urls")
async def post_signed_urls(request: Request, payload: SignedUrlRequest):
	"""Resolve signed display URLs for a batch of object names."""
	try:
		return await signed_urls(request, payload.object_names)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/images/orphans/sweep")
async def post_orphan_sweep(request: Request):
	"""Remove stored blobs that no image record references."""
	try:
		return await sweep_orphans(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/images/{image_id}")
async def get_image_by_id(request: Request, image_id: int):
	try:
		return await get_image(request, image_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/images/{image_id}")
async def delete_image_by_id(request: Request, image_id: int):
	"""Delete the image's stored bytes and its record."""
	try:
		return await delete_image(request, image_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/images/{image_id}/ocr")
async def post_ocr(request: Request, image_id: int):
	"""Run text detection on the image and merge the result into its metadata."""
	try:
		return await run_enrichment(request, image_id, JobKind.OCR)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/images/{image_id}/features")
async def post_features(request: Request, image_id: int):
	"""Extract the feature vector and color statistics and merge them into metadata."""
	try:
		return await run_enrichment(request, image_id, JobKind.FEATURES)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
