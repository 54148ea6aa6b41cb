"""交易对最新价格（每个 base/quote 一行）"""
from sqlalchemy import Column, DateTime, Integer, Numeric, String, UniqueConstraint, text
from sqlalchemy.sql import func

from price_feeder.models.db import Base


class TokenPrice(Base):
    __tablename__ = "token_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(32), nullable=False)
    quote_currency = Column(String(16), nullable=False)

    price = Column(Numeric(30, 8), nullable=False)
    price_change = Column(Numeric(30, 8), nullable=False, server_default=text("0"))
    price_change_percent = Column(Numeric(20, 8), nullable=False, server_default=text("0"))

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("base_currency", "quote_currency", name="uq_token_prices_base_quote"),
    )
