import math
from typing import Annotated

from pydantic import BaseModel, BeforeValidator


def _finite_or_none(value):
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


# JSON has no inf/nan; diverged solves and pure-reactance paths report None
FiniteFloat = Annotated[float | None, BeforeValidator(_finite_or_none)]


class Recommendation(BaseModel):
    level: str
    code: str
    message: str
    suggestion: str | None = None
