# storefront/repos/cart_repo.py
from datetime import datetime

from sqlalchemy import select, delete
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_session_id(self, session_id: str) -> CartModel | None:
        """Session row regardless of expiry."""
        return self.db.execute(
            select(CartModel)
            .options(selectinload(CartModel.items))
            .where(CartModel.session_id == session_id)
        ).scalar_one_or_none()

    def get_live(self, session_id: str, now: datetime) -> CartModel | None:
        return self.db.execute(
            select(CartModel)
            .options(selectinload(CartModel.items))
            .where(
                CartModel.session_id == session_id,
                CartModel.expires_at > now,
            )
        ).scalar_one_or_none()

    def get_live_by_customer(
        self, customer_email: str, now: datetime, exclude_session_id: str | None = None
    ) -> CartModel | None:
        stmt = (
            select(CartModel)
            .options(selectinload(CartModel.items))
            .where(
                CartModel.customer_email == customer_email,
                CartModel.expires_at > now,
            )
            .order_by(CartModel.updated_at.desc(), CartModel.id.desc())
            .limit(1)
        )
        if exclude_session_id is not None:
            stmt = stmt.where(CartModel.session_id != exclude_session_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def delete_cart(self, cart: CartModel) -> None:
        self.db.delete(cart)

    def delete_expired(self, now: datetime) -> int:
        expired_ids = self.db.execute(
            select(CartModel.id).where(CartModel.expires_at < now)
        ).scalars().all()

        if not expired_ids:
            return 0

        # lines first: bulk deletes bypass ORM cascades and SQLite ignores ON DELETE
        self.db.execute(
            delete(CartItemModel).where(CartItemModel.cart_id.in_(expired_ids))
        )
        self.db.execute(
            delete(CartModel).where(CartModel.id.in_(expired_ids))
        )
        self.db.commit()
        return len(expired_ids)

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
