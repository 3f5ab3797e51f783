"""
Filter criteria module for substituting business date placeholders into API filters
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

NO_FILTER = "N"
ORDER_CUTOFF_HOUR = 13
DATE_FORMAT = "%Y-%m-%d"
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def order_date(now: datetime) -> date:
    """Today before 13:00 local time, tomorrow from 13:00 onwards"""
    today = now.date()
    return today if now.hour < ORDER_CUTOFF_HOUR else today + timedelta(days=1)


def post_date(now: datetime) -> date:
    """Fixed look-back date used by posting filters (eight days ago)"""
    return now.date() - timedelta(days=8)


def update_criteria(criteria: Optional[str], day_offset: int, now: Optional[datetime] = None) -> str:
    """
    Replace placeholders in a filter template with computed dates

    Placeholders:
        SHIPDATE        today + day_offset
        ENDDATE         today + day_offset + 7
        xxxdowxxx       weekday name of today + day_offset (e.g. "Monday")
        xxxorderdatexxx today, or tomorrow once local time is past 13:00
        xxxpostdatexxx  today - 8 days

    Args:
        criteria: Filter template from the endpoint descriptor
        day_offset: Per-tenant day offset
        now: Local time to compute from, defaults to ``datetime.now()``

    Returns:
        Filter string to append to the request URL; empty when the template
        is empty or ``"N"``
    """
    if not criteria or criteria == NO_FILTER:
        logger.info("Criteria updated to: ")
        return ""

    now = now or datetime.now()
    ship_date = now.date() + timedelta(days=day_offset)

    updated = (criteria
               .replace("SHIPDATE", ship_date.strftime(DATE_FORMAT))
               .replace("ENDDATE", (ship_date + timedelta(days=7)).strftime(DATE_FORMAT))
               .replace("xxxdowxxx", WEEKDAY_NAMES[ship_date.weekday()])
               .replace("xxxorderdatexxx", order_date(now).strftime(DATE_FORMAT))
               .replace("xxxpostdatexxx", post_date(now).strftime(DATE_FORMAT)))

    logger.info(f"Criteria updated to: {updated}")
    return updated
