from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ProductOrm(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)

    offers: Mapped[list["OfferOrm"]] = relationship(
        cascade="all, delete-orphan", back_populates="product", order_by="OfferOrm.id"
    )
    trade_prices: Mapped[list["TradePriceOrm"]] = relationship(
        cascade="all, delete-orphan", back_populates="product", order_by="TradePriceOrm.id"
    )


class OfferOrm(Base):
    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    seller: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    product: Mapped[ProductOrm] = relationship(back_populates="offers")
    listed_prices: Mapped[list["ListedPriceOrm"]] = relationship(
        cascade="all, delete-orphan", back_populates="offer", order_by="ListedPriceOrm.id"
    )

    __table_args__ = (UniqueConstraint("product_id", "seller", name="uq_offers_product_seller"),)


class TradePriceOrm(Base):
    """Append-only execution prices of a product."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    product: Mapped[ProductOrm] = relationship(back_populates="trade_prices")


class ListedPriceOrm(Base):
    """Append-only listed prices of an offer."""

    __tablename__ = "listed_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers.id"), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    offer: Mapped[OfferOrm] = relationship(back_populates="listed_prices")


class UserOrm(Base):
    __tablename__ = "users"

    login: Mapped[str] = mapped_column(String, primary_key=True)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
