"""Rolling delivery performance and earnings for partners."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.core.config import settings
from orderflow.models.partner import DeliveryPartner, PartnerDelivery
from orderflow.utils.time import minutes_between, utcnow

logger = logging.getLogger(__name__)

ZERO: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class PartnerStats:
    rating_average: float
    rating_count: int
    earnings_tips: Decimal
    earnings_delivery_charges: Decimal
    earnings_total: Decimal
    total_deliveries: int
    completion_rate: float
    on_time_rate: float
    average_delivery_minutes: float


def compute_stats(records: Iterable[PartnerDelivery], sla_minutes: int | None = None) -> PartnerStats:
    """Fold completed deliveries into aggregates.

    Pure function of its input: the same records always give the same result.
    Completion rate is 100 whenever at least one delivery exists, since
    cancellations after assignment are not possible in the lifecycle.
    """
    window = settings.delivery_sla_minutes if sla_minutes is None else sla_minutes

    ratings: list[int] = []
    tips = ZERO
    charges = ZERO
    total = 0
    on_time = 0
    minutes_sum = 0.0

    for record in records:
        total += 1
        if record.rating is not None:
            ratings.append(record.rating)
        tips += record.tip or ZERO
        charges += record.delivery_charge or ZERO
        duration = minutes_between(record.order_created_at, record.delivered_at)
        minutes_sum += duration
        if duration <= window:
            on_time += 1

    return PartnerStats(
        rating_average=round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
        rating_count=len(ratings),
        earnings_tips=tips,
        earnings_delivery_charges=charges,
        earnings_total=tips + charges,
        total_deliveries=total,
        completion_rate=100.0 if total else 0.0,
        on_time_rate=round(on_time / total * 100, 2) if total else 0.0,
        average_delivery_minutes=round(minutes_sum / total, 2) if total else 0.0,
    )


def recompute(db: Session, partner: DeliveryPartner) -> PartnerStats:
    """Recompute and write the partner's aggregate fields; the caller commits."""
    records = db.scalars(
        select(PartnerDelivery).where(PartnerDelivery.partner_id == partner.id).order_by(PartnerDelivery.id.asc())
    ).all()
    stats = compute_stats(records)

    partner.rating_average = stats.rating_average
    partner.rating_count = stats.rating_count
    partner.earnings_tips = stats.earnings_tips
    partner.earnings_delivery_charges = stats.earnings_delivery_charges
    partner.earnings_total = stats.earnings_total
    partner.total_deliveries = stats.total_deliveries
    partner.completion_rate = stats.completion_rate
    partner.on_time_rate = stats.on_time_rate
    partner.average_delivery_minutes = stats.average_delivery_minutes
    partner.stats_updated_at = utcnow()

    logger.info(
        "[STATS] partner_id=%s deliveries=%s rating=%.2f on_time=%.1f%%",
        partner.id,
        stats.total_deliveries,
        stats.rating_average,
        stats.on_time_rate,
    )
    return stats
