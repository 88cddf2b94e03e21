from sqlalchemy import Column, Integer, ForeignKey, Numeric, String, DateTime
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("cart_sessions.id", ondelete="CASCADE"), index=True, nullable=False)

    # (product_id, variant_id) is the line identity inside a cart
    product_id = Column(String(255), nullable=False)
    variant_id = Column(String(255), nullable=True)

    title = Column(String(500), nullable=True)
    variant_label = Column(String(255), nullable=True)
    image = Column(String(1000), nullable=True)

    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)

    cart = relationship("CartModel", back_populates="items")
