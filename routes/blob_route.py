from fastapi import APIRouter, HTTPException, Query, Request

from controllers.image_controller import serve_blob

router = APIRouter()


@router.get("/blobs/{name}")
async def get_blob(request: Request, name: str, expires: int = Query(...), signature: str = Query(...)):
	"""Return stored image bytes for a valid, unexpired signed URL."""
	try:
		return await serve_blob(request, name, expires, signature)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
