from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from countapp.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"


# Reference data owned by the back-office screens. The stock count workflows
# only read these tables.


class Unit(db.Model):
    __tablename__ = "unit"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Employee(db.Model):
    __tablename__ = "employee"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False, default="")
    email = db.Column(db.String(255), unique=True)
    whatsapp = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ProductCategory(db.Model):
    __tablename__ = "product_category"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(255))


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    # Holds either a ProductCategory id or a literal category name.
    stock_category = db.Column(db.String(100))
    unit_of_measure = db.Column(db.String(20), default="un")


class ProductUnit(db.Model):
    __tablename__ = "product_unit"
    __table_args__ = (
        db.UniqueConstraint("product_id", "unit_id", name="uq_product_unit"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), nullable=False
    )
    unit_id = db.Column(
        db.Integer, db.ForeignKey("unit.id", ondelete="CASCADE"), nullable=False
    )
    stock_quantity = db.Column(db.Numeric(10, 3), default=0)

    product = db.relationship("Product")
    unit = db.relationship("Unit")


class StockCountStatus:
    DRAFT = "draft"
    READY = "ready"
    COUNTING = "counting"
    FINALIZED = "finalized"

    ALL_STATUSES = [DRAFT, READY, COUNTING, FINALIZED]
    LABELS = {
        DRAFT: "Draft",
        READY: "Ready for counting",
        COUNTING: "Counting",
        FINALIZED: "Finalized",
    }
    # Values written by earlier releases of the counting screens.
    LEGACY_ALIASES = {
        "rascunho": DRAFT,
        "pronta_para_contagem": READY,
        "started": READY,
        "em_contagem": COUNTING,
        "contagem_finalizada": FINALIZED,
        "completed": FINALIZED,
    }

    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().lower()
        if cleaned in cls.ALL_STATUSES:
            return cleaned
        return cls.LEGACY_ALIASES.get(cleaned)

    @classmethod
    def label(cls, value: str | None) -> str:
        canonical = cls.normalize(value)
        if canonical is None:
            return "-" if not value else value.replace("_", " ").title()
        return cls.LABELS[canonical]


class StockCount(db.Model):
    __tablename__ = "stock_count"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False)
    responsible_id = db.Column(db.Integer, db.ForeignKey("employee.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit.id"), nullable=False)
    notes = db.Column(db.Text)
    status = db.Column(
        db.String(32), nullable=False, default=StockCountStatus.DRAFT, index=True
    )
    public_token = db.Column(db.String(64), unique=True, nullable=True)
    category_order = db.Column(db.JSON, nullable=True)
    product_order = db.Column(db.JSON, nullable=True)
    uncounted_items = db.Column(db.Integer, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    counting_started_at = db.Column(db.DateTime, nullable=True)
    finalized_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    responsible = db.relationship("Employee")
    unit = db.relationship("Unit")
    items = db.relationship(
        "StockCountItem",
        back_populates="stock_count",
        cascade="all, delete-orphan",
        order_by="StockCountItem.id",
    )
    events = db.relationship(
        "StockCountEvent",
        back_populates="stock_count",
        cascade="all, delete-orphan",
        order_by="StockCountEvent.id",
    )

    def __repr__(self):
        return f"<StockCount {self.id} status={self.status}>"

    @property
    def status_label(self) -> str:
        return StockCountStatus.label(self.status)

    @property
    def has_saved_order(self) -> bool:
        return bool(self.category_order or self.product_order)


class StockCountItem(db.Model):
    __tablename__ = "stock_count_item"
    __table_args__ = (
        db.UniqueConstraint(
            "stock_count_id", "product_id", name="uq_stock_count_item_product"
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_count_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_count.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    counted_quantity = db.Column(db.Numeric(10, 3), nullable=True)
    system_quantity = db.Column(db.Numeric(10, 3), nullable=True)
    notes = db.Column(db.Text)
    # Set on the first real write; placeholders never carry it.
    counted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    stock_count = db.relationship("StockCount", back_populates="items")
    product = db.relationship("Product")

    @property
    def is_actually_counted(self) -> bool:
        if self.counted_at is not None:
            return True
        if self.counted_quantity is not None and Decimal(self.counted_quantity) != 0:
            return True
        if self.created_at and self.updated_at and self.updated_at > self.created_at:
            return True
        return False

    @property
    def counts_toward_completion(self) -> bool:
        return (
            self.is_actually_counted
            and self.counted_quantity is not None
            and Decimal(self.counted_quantity) > 0
        )


class StockCountEvent(db.Model):
    __tablename__ = "stock_count_event"

    EVENT_CREATED = "created"
    EVENT_INITIALIZED = "initialized"
    EVENT_CLOSED = "closed"
    EVENT_NOTIFICATION_SENT = "notification_sent"
    EVENT_NOTIFICATION_FAILED = "notification_failed"
    EVENT_BEGUN = "begun"
    EVENT_FINALIZED = "finalized"
    EVENT_CORRECTION = "correction"
    EVENT_ITEM_REMOVED = "item_removed"
    EVENT_ORDER_SAVED = "order_saved"

    id = db.Column(db.Integer, primary_key=True)
    stock_count_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_count.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = db.Column(db.String(32), nullable=False)
    actor = db.Column(db.String(255))
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    stock_count = db.relationship("StockCount", back_populates="events")
