# storefront/services/cart_service.py
import secrets
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.schemas import CartLineIn
from storefront.repos.cart_repo import CartRepo
from storefront.utils.settings import CART_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

MAX_SESSION_ID_LENGTH = 255


def generate_session_id() -> str:
    return secrets.token_hex(32)


def is_valid_session_id(session_id) -> bool:
    return (
        isinstance(session_id, str)
        and 0 < len(session_id) <= MAX_SESSION_ID_LENGTH
        and session_id.isprintable()
        and not session_id.isspace()
    )


def _normalize_variant(variant_id):
    if variant_id is None:
        return None
    variant_id = str(variant_id).strip()
    return variant_id or None


class CartService:
    """
    Server-side cart sessions keyed by an opaque token.

    Every mutation is a read-modify-write of one session followed by a
    commit; concurrent writers to the same session are not serialized and
    the last commit wins. Lookups with a malformed or unknown token return
    None instead of raising.
    """

    def __init__(self, db: Session, ttl_seconds: int = CART_TTL_SECONDS):
        self.repo = CartRepo(db)
        self.ttl = timedelta(seconds=ttl_seconds)

    # query
    def get(self, session_id: str) -> Dict[str, Any] | None:
        cart = self._live(session_id)
        return self._to_dict(cart) if cart else None

    # commands
    def get_or_create(self, session_id: str | None) -> Dict[str, Any]:
        return self._to_dict(self._live_or_new(session_id))

    def add_item(self, session_id: str | None, line: CartLineIn) -> Dict[str, Any]:
        cart = self._live_or_new(session_id)
        quantity = line.quantity if line.quantity is not None else 1
        if quantity <= 0:
            logger.info(f"Ignoring add of {line.product_id}/{line.variant_id} with quantity {quantity}")
            return self._to_dict(cart)

        existing = self._find_line(cart, line.product_id, line.variant_id)

        if existing:
            logger.info(
                f"Product {line.product_id}/{line.variant_id} already in cart, "
                f"quantity {existing.quantity} -> {existing.quantity + quantity}"
            )
            existing.quantity += quantity
        else:
            logger.info(f"Adding product {line.product_id}/{line.variant_id} to cart")
            cart.items.append(self._new_line(line, quantity=quantity, added_at=self._now()))

        return self._save(cart)

    def update_quantity(
        self,
        session_id: str,
        product_id: str,
        variant_id: str | None,
        quantity: int,
    ) -> Dict[str, Any] | None:
        cart = self._live(session_id)
        if not cart:
            return None

        line = self._find_line(cart, product_id, variant_id)
        if not line:
            return self._to_dict(cart)

        if quantity <= 0:
            cart.items.remove(line)
        else:
            line.quantity = quantity

        return self._save(cart)

    def remove_item(
        self, session_id: str, product_id: str, variant_id: str | None
    ) -> Dict[str, Any] | None:
        cart = self._live(session_id)
        if not cart:
            return None

        line = self._find_line(cart, product_id, variant_id)
        if line:
            cart.items.remove(line)

        return self._save(cart)

    def clear(self, session_id: str) -> Dict[str, Any] | None:
        cart = self._live(session_id)
        if not cart:
            return None

        cart.items.clear()
        return self._save(cart)

    def sync(self, session_id: str | None, client_items: Iterable[CartLineIn]) -> Dict[str, Any]:
        """
        Merge a client-held cart into the server copy.

        Lines present on both sides keep the larger quantity so that a stale
        client never shrinks the cart; lines only the client knows are
        inserted as sent.
        """
        cart = self._live_or_new(session_id)
        now = self._now()

        for client_line in client_items:
            if client_line.quantity is None or client_line.quantity <= 0:
                continue

            existing = self._find_line(cart, client_line.product_id, client_line.variant_id)
            if existing:
                existing.quantity = max(existing.quantity, client_line.quantity)
            else:
                cart.items.append(
                    self._new_line(
                        client_line,
                        quantity=client_line.quantity,
                        added_at=client_line.added_at or now,
                    )
                )

        return self._save(cart)

    def merge_cart(self, anonymous_session_id: str, customer_email: str) -> Dict[str, Any] | None:
        """
        Attach an anonymous cart to a known customer.

        If the customer already has a live cart, both carts are unioned with
        the max-quantity rule and the anonymous session is deleted; otherwise
        the anonymous session is simply labelled with the customer's email.
        """
        anonymous = self._live(anonymous_session_id)
        if not anonymous:
            return None

        now = self._now()
        survivor = self.repo.get_live_by_customer(
            customer_email, now, exclude_session_id=anonymous.session_id
        )

        if not survivor:
            logger.info("No live cart for customer, labelling session as theirs")
            anonymous.customer_email = customer_email
            return self._save(anonymous)

        for line in anonymous.items:
            existing = self._find_line(survivor, line.product_id, line.variant_id)
            if existing:
                existing.quantity = max(existing.quantity, line.quantity)
            else:
                survivor.items.append(
                    CartItemModel(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        title=line.title,
                        variant_label=line.variant_label,
                        image=line.image,
                        price=line.price,
                        quantity=line.quantity,
                        added_at=line.added_at,
                    )
                )

        self.repo.delete_cart(anonymous)
        logger.info(
            f"Merged {len(anonymous.items)} line(s) into customer cart {survivor.id}, "
            f"anonymous cart {anonymous.id} deleted"
        )
        return self._save(survivor)

    def associate_customer(self, session_id: str, customer_email: str) -> Dict[str, Any] | None:
        cart = self._live(session_id)
        if not cart:
            return None

        cart.customer_email = customer_email
        return self._save(cart)

    def delete(self, session_id: str) -> bool:
        if not is_valid_session_id(session_id):
            return False

        cart = self.repo.get_by_session_id(session_id)
        if not cart:
            return False

        self.repo.delete_cart(cart)
        self.repo.commit()
        return True

    def sweep_expired(self) -> int:
        removed = self.repo.delete_expired(self._now())
        if removed:
            logger.info(f"Cleaned up {removed} expired cart sessions")
        return removed

    # helpers
    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _live(self, session_id) -> CartModel | None:
        if not is_valid_session_id(session_id):
            return None
        return self.repo.get_live(session_id, self._now())

    def _live_or_new(self, session_id) -> CartModel:
        if not is_valid_session_id(session_id):
            session_id = generate_session_id()

        cart = self.repo.get_by_session_id(session_id)
        now = self._now()

        if cart is None:
            try:
                return self.repo.add_cart(
                    CartModel(
                        session_id=session_id,
                        expires_at=now + self.ttl,
                    )
                )
            except IntegrityError:
                # another request created the same session first
                self.repo.rollback()
                cart = self.repo.get_by_session_id(session_id)
                if cart is None:
                    raise

        if self.repo.get_live(session_id, now) is None:
            logger.info("Cart session expired, starting over with an empty cart")
            cart.items.clear()
            cart.customer_email = None
            cart.expires_at = now + self.ttl
            self.repo.commit()

        return cart

    @staticmethod
    def _find_line(cart: CartModel, product_id, variant_id) -> CartItemModel | None:
        product_id = str(product_id)
        variant_id = _normalize_variant(variant_id)
        return next(
            (
                i
                for i in cart.items
                if i.product_id == product_id and i.variant_id == variant_id
            ),
            None,
        )

    @staticmethod
    def _new_line(line: CartLineIn, quantity: int, added_at: datetime) -> CartItemModel:
        return CartItemModel(
            product_id=str(line.product_id),
            variant_id=_normalize_variant(line.variant_id),
            title=line.title,
            variant_label=line.variant_label,
            image=line.image,
            price=line.price,
            quantity=quantity,
            added_at=added_at,
        )

    def _save(self, cart: CartModel) -> Dict[str, Any]:
        # sliding expiry window on every mutation
        cart.expires_at = self._now() + self.ttl
        self.repo.commit()
        return self._to_dict(cart)

    @staticmethod
    def _to_dict(cart: CartModel) -> Dict[str, Any]:
        items = list(cart.items)
        subtotal = sum((Decimal(i.price) * i.quantity for i in items), Decimal("0.00"))

        return {
            "session_id": cart.session_id,
            "customer_email": cart.customer_email,
            "items": [
                {
                    "product_id": i.product_id,
                    "variant_id": i.variant_id,
                    "title": i.title,
                    "variant_label": i.variant_label,
                    "image": i.image,
                    "price": i.price,
                    "quantity": i.quantity,
                    "added_at": i.added_at,
                }
                for i in items
            ],
            "item_count": sum(i.quantity for i in items),
            "subtotal": subtotal,
            "expires_at": cart.expires_at,
        }
