"""Column types shared by the models, valid on both SQLite and PostgreSQL."""
from sqlalchemy import JSON, Numeric

# JSONB is PostgreSQL-only
JSONType = JSON

# Quantities in base units. Four decimals keep gram/millilitre conversions exact
# enough that the ledger sum never drifts from the counted value.
QuantityType = Numeric(18, 4)

# Unit cost of a receipt line
MoneyType = Numeric(14, 4)
