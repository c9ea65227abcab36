from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from db import models
from domain.auth import AuthenticatedUser, Role
from domain.catalog import Offer, ProductCatalogEntry, ProductId
from domain.stores import CredentialStore, MarketStore, MarketStoreError, RegistrationPolicy
from domain.trailing import TRAILING_WINDOW_SIZE
from services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class SqlMarketStore(MarketStore):
    """Market store backed by a relational database.

    Every write runs as one transaction on the given session: it is either
    committed as a whole, or rolled back and reported as ``False`` (rejected
    by validation) or ``MarketStoreError`` (database failure).
    """

    registration_policy = RegistrationPolicy.UPSERT_BY_ID

    def __init__(self, session: Session) -> None:
        self._session = session

    def fetch_all(self) -> list[ProductCatalogEntry]:
        stmt = (
            select(models.ProductOrm)
            .options(selectinload(models.ProductOrm.offers))
            .order_by(models.ProductOrm.id)
        )
        try:
            products = self._session.scalars(stmt).all()
            return self._to_domain(products)
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("fetch_all failed") from err

    def find_entry(self, name: str) -> ProductCatalogEntry | None:
        try:
            product = self._product_by_name(name)
            return self._to_domain([product])[0] if product is not None else None
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("find_entry failed") from err

    def find_product_id(self, name: str) -> str | None:
        stmt = select(models.ProductOrm.id).where(func.lower(models.ProductOrm.name) == name.lower())
        try:
            return self._session.scalar(stmt)
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("find_product_id failed") from err

    def register_product(self, product_id: str, name: str, category: str) -> bool:
        try:
            clash = self._product_by_name(name)
            if clash is not None and clash.id != product_id:
                return self._reject("Product name %s already belongs to id=%s", name, clash.id)

            product = self._session.get(models.ProductOrm, product_id)
            if product is None:
                self._session.add(models.ProductOrm(id=product_id, name=name, category=category))
            else:
                product.name = name
                product.category = category
            self._session.commit()
            return True
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("register_product failed") from err

    def upsert_offer(self, name: str, seller: str, price: float, quantity_delta: int) -> bool:
        if price < 0:
            return self._reject("Rejected offer for %s by %s: negative price %s", name, seller, price)
        try:
            product = self._product_by_name(name)
            if product is None:
                return self._reject("Rejected offer by %s: product not found: %s", seller, name)

            offer = self._offer_row(product.id, seller)
            if offer is None:
                if quantity_delta <= 0:
                    return self._reject(
                        "Rejected new offer for %s by %s: initial quantity must be positive", name, seller
                    )
                offer = models.OfferOrm(product_id=product.id, seller=seller, price=price, quantity=quantity_delta)
                self._session.add(offer)
                self._session.flush()
            else:
                if offer.quantity + quantity_delta < 0:
                    return self._reject(
                        "Rejected offer update for %s by %s: quantity %d %+d would go below zero",
                        name,
                        seller,
                        offer.quantity,
                        quantity_delta,
                    )
                offer.quantity += quantity_delta
                offer.price = price

            self._append_listed_price(offer.id, price)
            self._session.commit()
            return True
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("upsert_offer failed") from err

    def record_purchase(
        self,
        name: str,
        seller: str,
        quantity: int,
        execution_price: float,
        new_listed_price: float,
    ) -> bool:
        """Decrement, reprice and record the trade in one transaction.

        The update only applies while the offer still holds ``quantity`` units
        at ``execution_price``; a concurrent purchase that got there first
        makes this one return ``False``.
        """
        if quantity <= 0:
            return False
        try:
            product = self._product_by_name(name)
            if product is None:
                return self._reject("Purchase rejected: product not found: %s", name)
            offer = self._offer_row(product.id, seller, for_update=True)
            if offer is None:
                return self._reject("Purchase rejected: no offer by %s for %s", seller, name)
            if offer.quantity < quantity or offer.price != execution_price:
                return self._reject(
                    "Purchase rejected: offer %s/%s holds %d at %s, wanted %d at %s",
                    name,
                    seller,
                    offer.quantity,
                    offer.price,
                    quantity,
                    execution_price,
                )

            result = self._session.execute(
                update(models.OfferOrm)
                .where(
                    models.OfferOrm.id == offer.id,
                    models.OfferOrm.quantity >= quantity,
                    models.OfferOrm.price == execution_price,
                )
                .values(quantity=models.OfferOrm.quantity - quantity, price=new_listed_price)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                return self._reject("Purchase rejected: offer %s/%s changed concurrently", name, seller)

            self._append_listed_price(offer.id, new_listed_price)
            self._append_trade_price(product.id, execution_price)
            self._session.commit()
            return True
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("record_purchase failed") from err

    def total_available_quantity(self, name: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(models.OfferOrm.quantity), 0))
            .join(models.ProductOrm)
            .where(func.lower(models.ProductOrm.name) == name.lower())
        )
        try:
            return int(self._session.scalar(stmt) or 0)
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("total_available_quantity failed") from err

    def last_trade_prices(self, name: str, limit: int) -> list[float]:
        if limit <= 0:
            return []
        stmt = (
            select(models.TradePriceOrm.price)
            .join(models.ProductOrm)
            .where(func.lower(models.ProductOrm.name) == name.lower())
            .order_by(models.TradePriceOrm.id.desc())
            .limit(min(limit, TRAILING_WINDOW_SIZE))
        )
        try:
            return list(self._session.scalars(stmt).all())
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("last_trade_prices failed") from err

    def offer_price_history(self, name: str, seller: str) -> list[float] | None:
        try:
            product = self._product_by_name(name)
            offer = self._offer_row(product.id, seller) if product is not None else None
            if offer is None:
                return None
            stmt = (
                select(models.ListedPriceOrm.price)
                .where(models.ListedPriceOrm.offer_id == offer.id)
                .order_by(models.ListedPriceOrm.id.desc())
                .limit(TRAILING_WINDOW_SIZE)
            )
            return list(reversed(self._session.scalars(stmt).all()))
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("offer_price_history failed") from err

    def _product_by_name(self, name: str) -> models.ProductOrm | None:
        stmt = select(models.ProductOrm).where(func.lower(models.ProductOrm.name) == name.lower())
        return self._session.scalars(stmt).first()

    def _offer_row(self, product_id: str, seller: str, *, for_update: bool = False) -> models.OfferOrm | None:
        stmt = select(models.OfferOrm).where(
            models.OfferOrm.product_id == product_id,
            func.lower(models.OfferOrm.seller) == seller.lower(),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalars(stmt).first()

    def _append_listed_price(self, offer_id: int, price: float) -> None:
        self._session.add(models.ListedPriceOrm(offer_id=offer_id, price=price))

    def _append_trade_price(self, product_id: str, price: float) -> None:
        self._session.add(models.TradePriceOrm(product_id=product_id, price=price))

    def _reject(self, message: str, *args: object) -> bool:
        logger.warning(message, *args)
        self._session.rollback()
        return False

    def _newest_prices(self, model, owner_column, owner_ids: Iterable[object]) -> dict[object, list[float]]:
        """Newest ``TRAILING_WINDOW_SIZE`` prices per owner, oldest first.

        ``model`` is one of the append-only price tables and ``owner_column``
        its foreign key; rows beyond the window are never loaded.
        """
        owner_ids = list(owner_ids)
        windows: dict[object, list[float]] = defaultdict(list)
        if not owner_ids:
            return windows
        row_num = func.row_number().over(partition_by=owner_column, order_by=model.id.desc()).label("row_num")
        ranked = (
            select(owner_column.label("owner_id"), model.id, model.price, row_num)
            .where(owner_column.in_(owner_ids))
            .subquery()
        )
        stmt = (
            select(ranked.c.owner_id, ranked.c.price)
            .where(ranked.c.row_num <= TRAILING_WINDOW_SIZE)
            .order_by(ranked.c.owner_id, ranked.c.id)
        )
        for owner_id, price in self._session.execute(stmt):
            windows[owner_id].append(price)
        return windows

    def _to_domain(self, products: Iterable[models.ProductOrm]) -> list[ProductCatalogEntry]:
        products = list(products)
        offer_rows = [offer for product in products for offer in product.offers]
        trade_windows = self._newest_prices(
            models.TradePriceOrm, models.TradePriceOrm.product_id, (product.id for product in products)
        )
        listed_windows = self._newest_prices(
            models.ListedPriceOrm, models.ListedPriceOrm.offer_id, (offer.id for offer in offer_rows)
        )
        return [
            ProductCatalogEntry(
                id=ProductId(product.id),
                name=product.name,
                category=product.category,
                offers=[
                    Offer(
                        seller=offer.seller,
                        price=offer.price,
                        quantity=offer.quantity,
                        price_history=listed_windows[offer.id],
                    )
                    for offer in product.offers
                ],
                trade_history=trade_windows[product.id],
            )
            for product in products
        ]


class SqlCredentialStore(CredentialStore):
    def __init__(self, session: Session) -> None:
        self._session = session

    def add_user(self, login: str, password: str, role: Role) -> AuthenticatedUser:
        try:
            user = self._user_row(login)
            if user is None:
                user = models.UserOrm(login=login, password_hash=hash_password(password), role=role.value)
                self._session.add(user)
            else:
                user.password_hash = hash_password(password)
                user.role = role.value
            self._session.commit()
            return AuthenticatedUser(login=user.login, role=role)
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("add_user failed") from err

    def authenticate(self, login: str, password: str) -> AuthenticatedUser | None:
        try:
            user = self._user_row(login)
        except SQLAlchemyError as err:
            self._session.rollback()
            raise MarketStoreError("authenticate failed") from err
        if user is None or not verify_password(password, user.password_hash):
            return None
        return AuthenticatedUser(login=user.login, role=Role(user.role))

    def _user_row(self, login: str) -> models.UserOrm | None:
        stmt = select(models.UserOrm).where(func.lower(models.UserOrm.login) == login.lower())
        return self._session.scalars(stmt).first()


__all__ = ["SqlCredentialStore", "SqlMarketStore"]
