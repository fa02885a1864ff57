# models.py - database structure for Book Haven
from decimal import Decimal

from werkzeug.security import generate_password_hash, check_password_hash

from bookhaven.core import db, utcnow, ROLE_USER, STAFF_ROLES
from bookhaven.discounts import as_percent, discounted_total

CENT = Decimal("0.01")

CART_ACTIVE = "active"
CART_REMOVED = "removed"

OUTBOX_PENDING = "pending"
OUTBOX_SENT = "sent"
OUTBOX_FAILED = "failed"

DEFAULT_PROFILE_PICTURE = "/profile-pictures/default-profile.jpg"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    profile_picture = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "profilePicture": self.profile_picture or DEFAULT_PROFILE_PICTURE,
        }


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    author = db.Column(db.String(120), nullable=False)
    isbn = db.Column(db.String(20), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    publication_year = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(40), nullable=False)
    image_path = db.Column(db.String(200), nullable=True)  # path under /static

    # sale fields, cleared together when a sale expires
    is_on_sale = db.Column(db.Boolean, nullable=False, default=False)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    sale_start_date = db.Column(db.DateTime, nullable=True)
    sale_end_date = db.Column(db.DateTime, nullable=True)

    def sale_active(self, now=None):
        """True when the sale flag is set and ``now`` falls inside the window."""
        if not self.is_on_sale or self.sale_start_date is None or self.sale_end_date is None:
            return False
        now = now or utcnow()
        return self.sale_start_date <= now <= self.sale_end_date

    def sale_discount(self, now=None):
        """Sale discount as a fraction in [0, 1]."""
        if not self.sale_active(now):
            return Decimal("0")
        return Decimal(str(self.discount_percentage)) / 100

    def current_price(self, now=None):
        price = Decimal(str(self.price))
        return (price * (1 - self.sale_discount(now))).quantize(CENT)

    def clear_sale(self):
        # idempotent: the sweeper and admin edits may both get here
        self.is_on_sale = False
        self.discount_percentage = Decimal("0")
        self.sale_start_date = None
        self.sale_end_date = None

    def to_dict(self, now=None):
        now = now or utcnow()
        on_sale = self.sale_active(now)
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "price": str(Decimal(str(self.price)).quantize(CENT)),
            "currentPrice": str(self.current_price(now)),
            "publicationYear": self.publication_year,
            "description": self.description,
            "category": self.category,
            "imagePath": self.image_path,
            "isOnSale": on_sale,
            "discountPercentage": float(self.discount_percentage) if on_sale else 0.0,
            "saleStartDate": self.sale_start_date.isoformat() if on_sale else None,
            "saleEndDate": self.sale_end_date.isoformat() if on_sale else None,
        }


class CartLine(db.Model):
    __tablename__ = "cart_lines"
    __table_args__ = (
        # one active line per (user, book); removed lines are kept as history
        db.Index(
            "uq_cart_active_line",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default=CART_ACTIVE)
    date_added = db.Column(db.DateTime, nullable=False, default=utcnow)

    book = db.relationship("Book")

    def remove(self):
        self.status = CART_REMOVED

    def restore(self):
        self.status = CART_ACTIVE

    def to_dict(self):
        book = self.book
        return {
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "price": str(Decimal(str(book.price)).quantize(CENT)),
            "currentPrice": str(book.current_price()),
            "imagePath": book.image_path,
            "quantity": self.quantity,
            "isOnSale": book.sale_active(),
        }


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("user_id", "book_id", name="uq_order_user_book"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    date_added = db.Column(db.DateTime, nullable=False, default=utcnow)
    claim_code = db.Column(db.String(64), unique=True, nullable=False)
    discount_percentage = db.Column(db.Numeric(5, 4), nullable=False, default=0)  # fraction
    is_purchased = db.Column(db.Boolean, nullable=False, default=False)
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)

    book = db.relationship("Book")
    user = db.relationship("User")

    @property
    def status(self):
        if self.is_cancelled:
            return "Cancelled"
        if self.is_purchased:
            return "Purchased"
        return "Pending"

    @property
    def discount(self):
        return Decimal(str(self.discount_percentage))

    @property
    def unit_price(self):
        """Book list price after the discount frozen on this order."""
        return discounted_total(self.book.price, self.quantity, self.discount)[0]

    @property
    def total(self):
        return discounted_total(self.book.price, self.quantity, self.discount)[1]

    def to_dict(self):
        book = self.book
        return {
            "id": self.id,
            "userId": self.user_id,
            "bookId": book.id,
            "title": book.title,
            "author": book.author,
            "price": str(Decimal(str(book.price)).quantize(CENT)),
            "imagePath": book.image_path,
            "quantity": self.quantity,
            "dateAdded": self.date_added.isoformat(),
            "claimCode": self.claim_code,
            "discountPercentage": float(as_percent(self.discount)),
            "unitPrice": str(self.unit_price),
            "total": str(self.total),
            "isPurchased": self.is_purchased,
            "isCancelled": self.is_cancelled,
            "status": self.status,
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    message = db.Column(db.String(500), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "isRead": self.is_read,
        }


class OutboxEvent(db.Model):
    """A side effect recorded in the same transaction as its cause."""

    __tablename__ = "outbox_events"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(40), nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=OUTBOX_PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)


class ContactMessage(db.Model):
    __tablename__ = "contact_messages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
