"""
Module: period_kernel.db.types
Responsibility: Annotated type aliases for the column types shared by every
    period-scoped model, and the SQL types they map to.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

No floats anywhere in the kernel.  Amounts are Decimal with the precision
the originating entry carried; nothing here rounds.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount, 38 digits total, 9 decimal places
Money = Annotated[Decimal, "money"]

# Opaque tenant identifier supplied by the external registry
TenantId = Annotated[str, "tenant_id"]

# Short identifier strings (enum values, codes)
ShortCode = Annotated[str, "short_code"]

# Human-readable names and titles
Name = Annotated[str, "name"]

# Long text for descriptions
LongText = Annotated[str, "long_text"]


COLUMN_TYPES: dict = {
    Money: Numeric(38, 9),
    TenantId: String(64),
    ShortCode: String(50),
    Name: String(200),
    LongText: String(4000),
}

ZERO = Decimal("0")
