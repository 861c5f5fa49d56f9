import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    BigInteger,
    Float,
    Boolean,
    DateTime,
    JSON,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from farmhub.database import Base


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every timestamp we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =========================
# ENUMS
# =========================

class UserRole(str, enum.Enum):
    admin = "admin"
    expert = "expert"
    farmer = "farmer"
    customer = "customer"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    cancelled = "cancelled"


class ConsultationStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    completed = "completed"
    cancelled = "cancelled"


class AttachmentType(str, enum.Enum):
    image = "image"
    video = "video"
    audio = "audio"
    document = "document"


# =========================
# USER
# =========================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    name = Column(String(255), nullable=False)
    username = Column(String(255))
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone_number = Column(String(20))
    hashed_password = Column(String, nullable=False)

    image_url = Column(String)
    location = Column(String)

    role = Column(String(20), default=UserRole.customer.value, nullable=False, index=True)
    favorites = Column(JSON)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    products = relationship(
        "Product",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    orders = relationship(
        "Order",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value

    @property
    def is_expert(self) -> bool:
        return self.role == UserRole.expert.value


class RevokedToken(Base):
    """JWT ids invalidated by logout. Expired rows are pruned on the next logout."""
    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True)
    jti = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PasswordResetOTP(Base):
    __tablename__ = "password_reset_otps"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    otp = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return not self.is_used and as_utc(self.expires_at) > now


# =========================
# MARKETPLACE
# =========================

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    products = relationship(
        "Product",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    image = Column(String, nullable=False)  # relative to PUBLIC_DIR

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    is_featured = Column(Boolean, default=False, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    location = Column(String)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    category = relationship("Category", back_populates="products")
    user = relationship("User", back_populates="products")


Index("idx_products_price", Product.price)
Index("idx_products_created_at", Product.created_at)
Index("idx_products_featured", Product.is_featured)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    total_amount = Column(Float, nullable=False)

    status = Column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )

    shipping_address = Column(Text, nullable=False)
    phone_number = Column(String(20), nullable=False)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


Index("idx_orders_status", Order.status)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)

    status = Column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


# =========================
# CONSULTATIONS
# =========================

class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True)

    farmer_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expert_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    consultation_date = Column(DateTime(timezone=True), nullable=False)
    description = Column(Text)

    status = Column(
        Enum(ConsultationStatus, name="consultation_status"),
        default=ConsultationStatus.pending,
        nullable=False,
    )

    expert_notes = Column(Text)
    decline_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    farmer = relationship("User", foreign_keys=[farmer_id])
    expert = relationship("User", foreign_keys=[expert_id])


Index("idx_consultations_status", Consultation.status)


# =========================
# TIPS
# =========================

class TipCategory(Base):
    __tablename__ = "tip_categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text)
    icon = Column(String)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    tips = relationship(
        "Tip",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Tip(Base):
    __tablename__ = "tips"

    id = Column(Integer, primary_key=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id = Column(
        Integer,
        ForeignKey("tip_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    content = Column(Text, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    views_count = Column(Integer, default=0, nullable=False)
    likes_count = Column(Integer, default=0, nullable=False)
    tags = Column(JSON)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User")
    category = relationship("TipCategory", back_populates="tips")
    likes = relationship("TipLike", cascade="all, delete-orphan", passive_deletes=True)
    saves = relationship("SavedTip", cascade="all, delete-orphan", passive_deletes=True)


class TipLike(Base):
    __tablename__ = "tip_likes"
    __table_args__ = (UniqueConstraint("user_id", "tip_id", name="uq_tip_likes_user_tip"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tip_id = Column(Integer, ForeignKey("tips.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SavedTip(Base):
    __tablename__ = "saved_tips"
    __table_args__ = (UniqueConstraint("user_id", "tip_id", name="uq_saved_tips_user_tip"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tip_id = Column(Integer, ForeignKey("tips.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# =========================
# SUCCESS STORIES
# =========================

class SuccessStory(Base):
    __tablename__ = "success_stories"

    id = Column(Integer, primary_key=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    location = Column(String(255))
    crop_type = Column(String(255), index=True)
    yield_improvement = Column(Float)
    yield_unit = Column(String(50))

    is_featured = Column(Boolean, default=False, nullable=False)
    views_count = Column(Integer, default=0, nullable=False)
    likes_count = Column(Integer, default=0, nullable=False)
    comments_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User")
    images = relationship(
        "StoryImage",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="StoryImage.order",
    )
    comments = relationship(
        "StoryComment",
        back_populates="story",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    likes = relationship("StoryLike", cascade="all, delete-orphan", passive_deletes=True)


class StoryImage(Base):
    __tablename__ = "story_images"

    id = Column(Integer, primary_key=True)
    story_id = Column(
        Integer,
        ForeignKey("success_stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    image_path = Column(String, nullable=False)
    caption = Column(String(255))
    order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    story = relationship("SuccessStory", back_populates="images")


class StoryComment(Base):
    __tablename__ = "story_comments"

    id = Column(Integer, primary_key=True)
    story_id = Column(
        Integer,
        ForeignKey("success_stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    comment = Column(Text, nullable=False)
    parent_id = Column(
        Integer,
        ForeignKey("story_comments.id", ondelete="CASCADE"),
        index=True,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    story = relationship("SuccessStory", back_populates="comments")
    user = relationship("User")
    parent = relationship("StoryComment", remote_side=[id], back_populates="children")
    children = relationship(
        "StoryComment",
        back_populates="parent",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class StoryLike(Base):
    __tablename__ = "story_likes"
    __table_args__ = (UniqueConstraint("story_id", "user_id", name="uq_story_likes_story_user"),)

    id = Column(Integer, primary_key=True)
    story_id = Column(Integer, ForeignKey("success_stories.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# =========================
# COMMUNITY DISCUSSION
# =========================

class CommunityMessage(Base):
    __tablename__ = "community_messages"

    id = Column(Integer, primary_key=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = Column(String(255))
    content = Column(Text, nullable=False)
    category = Column(String(100), index=True)
    tags = Column(JSON)

    is_pinned = Column(Boolean, default=False, nullable=False)
    is_announcement = Column(Boolean, default=False, nullable=False)

    views_count = Column(Integer, default=0, nullable=False)
    likes_count = Column(Integer, default=0, nullable=False)
    replies_count = Column(Integer, default=0, nullable=False)
    last_reply_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User")
    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.order",
    )
    replies = relationship(
        "MessageReply",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    likes = relationship("MessageLike", cascade="all, delete-orphan", passive_deletes=True)


Index("idx_community_messages_updated_at", CommunityMessage.updated_at)


class MessageAttachment(Base):
    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True)
    message_id = Column(
        Integer,
        ForeignKey("community_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_name = Column(String, nullable=False)   # original client file name
    file_path = Column(String, nullable=False)   # relative to PUBLIC_DIR
    file_type = Column(String(20), nullable=False)
    mime_type = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    caption = Column(String(255))
    order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    message = relationship("CommunityMessage", back_populates="attachments")

    @property
    def formatted_size(self) -> str:
        size = float(self.file_size or 0)
        units = ["B", "KB", "MB", "GB"]
        i = 0
        while size > 1024 and i < len(units) - 1:
            size /= 1024
            i += 1
        return f"{round(size, 2):g} {units[i]}"


class MessageReply(Base):
    __tablename__ = "message_replies"

    id = Column(Integer, primary_key=True)
    message_id = Column(
        Integer,
        ForeignKey("community_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    parent_reply_id = Column(
        Integer,
        ForeignKey("message_replies.id", ondelete="CASCADE"),
        index=True,
    )
    likes_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    message = relationship("CommunityMessage", back_populates="replies")
    user = relationship("User")
    parent = relationship("MessageReply", remote_side=[id], back_populates="children")
    children = relationship(
        "MessageReply",
        back_populates="parent",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    likes = relationship("ReplyLike", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def depth(self) -> int:
        depth = 0
        parent = self.parent
        while parent is not None:
            depth += 1
            parent = parent.parent
        return depth


class MessageLike(Base):
    __tablename__ = "message_likes"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_likes_message_user"),)

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("community_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ReplyLike(Base):
    __tablename__ = "reply_likes"
    __table_args__ = (UniqueConstraint("reply_id", "user_id", name="uq_reply_likes_reply_user"),)

    id = Column(Integer, primary_key=True)
    reply_id = Column(Integer, ForeignKey("message_replies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
