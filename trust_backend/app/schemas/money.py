"""
Money field types shared by the trust account schemas.
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BeforeValidator, Field

from trust_backend.app.core.money import to_major


def _minor_to_major(value):
    # ORM rows and domain results carry integer cents
    if isinstance(value, int) and not isinstance(value, bool):
        return to_major(value)
    return value


# Response amount: integer minor units in, two-place decimal out
MoneyOut = Annotated[Decimal, BeforeValidator(_minor_to_major)]

# Request amounts
PositiveAmount = Annotated[Decimal, Field(gt=0, max_digits=15, decimal_places=2)]
NonNegativeAmount = Annotated[Decimal, Field(ge=0, max_digits=15, decimal_places=2)]
Rate = Annotated[Decimal, Field(ge=0, le=1, max_digits=8, decimal_places=6)]
