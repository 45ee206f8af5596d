from fastapi import APIRouter

from src.core.totals import calculate_totals
from src.server.schemas.quote import TotalsPreviewIn, TotalsPreviewOut

router = APIRouter(prefix="/totals", tags=["totals"])


@router.post(
    "/preview",
    summary="Beräkna radbelopp, subtotal och slutsumma (förhandsvisning)",
    response_model=TotalsPreviewOut,
)
def preview_totals(payload: TotalsPreviewIn) -> TotalsPreviewOut:
    totals = calculate_totals(payload.items, payload.extra_work, payload.discount)
    return TotalsPreviewOut(
        item_totals=list(totals.item_totals),
        subtotal=totals.subtotal,
        discount=totals.discount,
        grand_total=totals.grand_total,
    )
