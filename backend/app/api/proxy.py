"""File proxy and spreadsheet preview endpoints."""

from fastapi import APIRouter, HTTPException, Query, Response, status

from app.schemas.proxy import XlsxPreviewResponse
from app.services.proxy import (
    InvalidProxyUrlError,
    ProxyFetchError,
    ProxyUrlNotAllowedError,
    SpreadsheetPreviewError,
    build_xlsx_preview,
    content_disposition,
    fetch_upstream,
    infer_filename,
    validate_proxy_url,
)

router = APIRouter(tags=["Files"])


async def _fetch(src: str | None):
    try:
        url = validate_proxy_url(src)
    except InvalidProxyUrlError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ProxyUrlNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    try:
        upstream = await fetch_upstream(url)
    except ProxyUrlNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except ProxyFetchError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream fetch failed"
        ) from exc
    return url, upstream


@router.get("/proxy-file")
async def proxy_file(
    src: str | None = Query(None, description="Absolute http(s) URL of the file"),
    download: bool = Query(False, description="Force an attachment download"),
):
    """Stream an allow-listed remote file to the browser."""
    url, upstream = await _fetch(src)
    filename = infer_filename(url, upstream.content_type) if download else None
    return Response(
        content=upstream.content,
        media_type=upstream.content_type,
        headers={
            "content-disposition": content_disposition(filename, download),
            "cache-control": "private, max-age=60",
        },
    )


@router.get("/preview/xlsx", response_model=XlsxPreviewResponse)
async def preview_xlsx(
    src: str | None = Query(None, description="Absolute http(s) URL of the workbook"),
):
    """Return the rows of every sheet in a remote workbook."""
    url, upstream = await _fetch(src)
    try:
        sheets = build_xlsx_preview(upstream.content)
    except SpreadsheetPreviewError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return XlsxPreviewResponse(
        filename=infer_filename(url, upstream.content_type),
        sheets=sheets,
    )
