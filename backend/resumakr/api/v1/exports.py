"""PDF export endpoints: monthly download quota and watermarking."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.api.deps import get_authenticated_context, get_db, raise_if_denied
from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.gate import Feature, check_feature, usage_limit_denial
from resumakr.billing.timeutils import period_key
from resumakr.billing.usage import (
    claim_pdf_download,
    get_pdf_usage,
    pdf_usage_from_counters,
    remaining_for,
)
from resumakr.schemas.subscriptions import PdfDownloadResponse, PdfStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/exports", tags=["exports"])


@router.get("/pdf-status", response_model=PdfStatusResponse)
async def pdf_status(
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> PdfStatusResponse:
    """Whether the caller may download a PDF this month."""
    now = ctx.resolved_at
    limit = ctx.limits.pdf_downloads_per_month
    usage = pdf_usage_from_counters(ctx.counters, limit, now)
    return PdfStatusResponse(
        can_download=not usage.exceeded,
        watermark=ctx.limits.watermark_pdf,
        used=usage.used,
        limit=usage.limit,
        remaining=usage.remaining,
        period=period_key(now),
        tier=ctx.tier.value,
    )


@router.post("/pdf-download", response_model=PdfDownloadResponse)
async def pdf_download(
    db: AsyncSession = Depends(get_db),
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> PdfDownloadResponse:
    """Record a PDF download after the gate allows it.

    Raises:
        HTTPException 402: monthly download limit reached.
    """
    raise_if_denied(check_feature(ctx, Feature.PDF_EXPORT, ctx.resolved_at))

    limit = ctx.limits.pdf_downloads_per_month
    used = await claim_pdf_download(db, ctx.user_id, limit, ctx.resolved_at)
    if used is None:
        # Another request took the last download after our snapshot was read
        usage = await get_pdf_usage(db, ctx.user_id, limit, ctx.resolved_at)
        raise_if_denied(usage_limit_denial(ctx, Feature.PDF_EXPORT, usage))

    return PdfDownloadResponse(
        watermark=ctx.limits.watermark_pdf,
        used=used,
        limit=limit,
        remaining=remaining_for(used, limit),
    )
