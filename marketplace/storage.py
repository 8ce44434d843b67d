"""
Storage Module
===============
Repository interface for every marketplace record, plus the in-memory
implementation used today.

BaseStore:   the operations the API and the core logic rely on (CRUD and
             filtered queries). A relational backend only has to implement
             this interface; verification and conversation logic never
             touch the storage internals.
MemoryStore: dict-backed store with incrementing integer ids. Every
             method runs under one lock, so each call is atomic and two
             writers can never interleave inside a single record update.
             No durability: data lives as long as the process.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from marketplace.errors import NotFoundError, ValidationError
from marketplace.schemas import (
    Message, MessageCreate, News, NewsCreate, Product, ProductCreate, Project,
    ProjectCreate, User, VerificationEvent, WaitlistCreate, WaitlistEntry,
)

logger = logging.getLogger(__name__)

# Fields no update call may overwrite
_IMMUTABLE_FIELDS = {"id", "createdAt"}

SAMPLE_NEWS = [
    NewsCreate(
        title="Breakthrough in Natural Language Processing Sets New Benchmarks",
        content="Researchers have developed a new technique that dramatically improves AI understanding "
                "of complex language patterns, opening doors for more natural human-computer interaction.",
        image="https://images.unsplash.com/photo-1607799279861-4dd421887fb3",
        category="Research",
    ),
    NewsCreate(
        title="New International Framework for AI Governance Announced",
        content="Leading nations have agreed on a comprehensive framework for AI regulation that aims to "
                "balance innovation with ethical considerations and public safety.",
        image="https://images.unsplash.com/photo-1581092335867-bfc5aa5d2d95",
        category="Regulation",
    ),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(records: Iterable) -> list:
    return sorted(records, key=lambda r: (r.createdAt, r.id), reverse=True)


def _oldest_first(records: Iterable) -> list:
    return sorted(records, key=lambda r: (r.createdAt, r.id))


class BaseStore(ABC):
    """Storage operations, independent of the backend."""

    # ---------- USERS ----------

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_users(self, user_ids: Iterable[int]) -> List[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, username: str, password_hash: str, email: str,
                    full_name: Optional[str] = None, role: str = "user") -> User: ...

    @abstractmethod
    def update_user(self, user_id: int, fields: dict) -> Optional[User]: ...

    # ---------- PRODUCTS ----------

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    def get_products(self, limit: int = 10, offset: int = 0) -> List[Product]: ...

    @abstractmethod
    def get_featured_products(self, limit: int = 6) -> List[Product]: ...

    @abstractmethod
    def get_products_by_category(self, category: str) -> List[Product]: ...

    @abstractmethod
    def get_products_by_seller(self, seller_id: int) -> List[Product]: ...

    @abstractmethod
    def create_product(self, data: ProductCreate, seller_id: int) -> Product: ...

    @abstractmethod
    def update_product(self, product_id: int, fields: dict) -> Optional[Product]: ...

    @abstractmethod
    def delete_product(self, product_id: int) -> bool: ...

    @abstractmethod
    def add_verification_event(self, product_id: int, actor_id: Optional[int], automated: bool,
                               previous_status: str, status: str, notes: Optional[str],
                               risk_score: Optional[int]) -> VerificationEvent: ...

    @abstractmethod
    def get_verification_events(self, product_id: int) -> List[VerificationEvent]: ...

    # ---------- PROJECTS ----------

    @abstractmethod
    def get_project(self, project_id: int) -> Optional[Project]: ...

    @abstractmethod
    def get_projects(self, limit: int = 10, offset: int = 0) -> List[Project]: ...

    @abstractmethod
    def get_projects_by_user(self, user_id: int) -> List[Project]: ...

    @abstractmethod
    def create_project(self, data: ProjectCreate, user_id: int) -> Project: ...

    @abstractmethod
    def update_project(self, project_id: int, fields: dict) -> Optional[Project]: ...

    # ---------- MESSAGES ----------

    @abstractmethod
    def get_message(self, message_id: int) -> Optional[Message]: ...

    @abstractmethod
    def get_messages_by_user(self, user_id: int) -> List[Message]:
        """All messages sent or received by the user, newest first."""

    @abstractmethod
    def get_conversation(self, user1_id: int, user2_id: int) -> List[Message]:
        """The two-party thread, oldest first."""

    @abstractmethod
    def create_message(self, data: MessageCreate, sender_id: int) -> Message: ...

    @abstractmethod
    def mark_message_read(self, message_id: int) -> Optional[Message]: ...

    @abstractmethod
    def mark_messages_read(self, message_ids: Iterable[int]) -> List[Message]:
        """Flip `read` on every listed message; returns only those that changed."""

    # ---------- NEWS ----------

    @abstractmethod
    def get_news(self, news_id: int) -> Optional[News]: ...

    @abstractmethod
    def get_all_news(self, limit: int = 10, offset: int = 0) -> List[News]: ...

    @abstractmethod
    def create_news(self, data: NewsCreate) -> News: ...

    # ---------- WAITLIST ----------

    @abstractmethod
    def add_to_waitlist(self, data: WaitlistCreate) -> WaitlistEntry:
        """Raises ValidationError, without storing anything, if the email is taken."""

    @abstractmethod
    def is_email_in_waitlist(self, email: str) -> bool: ...


class MemoryStore(BaseStore):
    """In-memory BaseStore. Construct one per app (or per test)."""

    def __init__(self, seed_news: bool = True):
        self._lock = Lock()

        self._users: Dict[int, User] = {}
        self._products: Dict[int, Product] = {}
        self._projects: Dict[int, Project] = {}
        self._messages: Dict[int, Message] = {}
        self._news: Dict[int, News] = {}
        self._waitlist: Dict[int, WaitlistEntry] = {}
        self._verification_events: Dict[int, VerificationEvent] = {}

        self._counters: Dict[str, int] = {}

        if seed_news:
            for item in SAMPLE_NEWS:
                self.create_news(item)

    def _next_id(self, kind: str) -> int:
        # Caller holds the lock
        self._counters[kind] = self._counters.get(kind, 0) + 1
        return self._counters[kind]

    @staticmethod
    def _apply(record, fields: dict):
        changes = {k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS}
        # Re-validate the merged record so no update can store an invalid one
        try:
            return type(record).model_validate({**record.model_dump(), **changes})
        except PydanticValidationError as e:
            fields_in_error = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise ValidationError(f"Invalid value for {', '.join(fields_in_error)}")

    # ---------- USERS ----------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_users(self, user_ids: Iterable[int]) -> List[User]:
        with self._lock:
            return [self._users[i] for i in dict.fromkeys(user_ids) if i in self._users]

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.username == username), None)

    def create_user(self, username: str, password_hash: str, email: str,
                    full_name: Optional[str] = None, role: str = "user") -> User:
        with self._lock:
            if any(u.username == username for u in self._users.values()):
                raise ValidationError("Username already exists")
            if any(u.email == email for u in self._users.values()):
                raise ValidationError("Email already registered")

            user = User(
                id=self._next_id("user"),
                username=username,
                password=password_hash,
                email=email,
                fullName=full_name,
                role=role,
                createdAt=_now(),
            )
            self._users[user.id] = user
            return user

    def update_user(self, user_id: int, fields: dict) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            email = fields.get("email")
            if email and any(u.email == email and u.id != user_id for u in self._users.values()):
                raise ValidationError("Email already registered")
            updated = self._apply(user, fields)
            self._users[user_id] = updated
            return updated

    # ---------- PRODUCTS ----------

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def get_products(self, limit: int = 10, offset: int = 0) -> List[Product]:
        with self._lock:
            return list(self._products.values())[offset:offset + limit]

    def get_featured_products(self, limit: int = 6) -> List[Product]:
        with self._lock:
            return [p for p in self._products.values() if p.featured][:limit]

    def get_products_by_category(self, category: str) -> List[Product]:
        with self._lock:
            return [p for p in self._products.values() if p.category == category]

    def get_products_by_seller(self, seller_id: int) -> List[Product]:
        with self._lock:
            return [p for p in self._products.values() if p.sellerId == seller_id]

    def create_product(self, data: ProductCreate, seller_id: int) -> Product:
        with self._lock:
            product = Product(
                id=self._next_id("product"),
                sellerId=seller_id,
                createdAt=_now(),
                **data.model_dump(),
            )
            self._products[product.id] = product
            return product

    def update_product(self, product_id: int, fields: dict) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            if not product:
                return None
            updated = self._apply(product, fields)
            self._products[product_id] = updated
            return updated

    def delete_product(self, product_id: int) -> bool:
        with self._lock:
            return self._products.pop(product_id, None) is not None

    def add_verification_event(self, product_id: int, actor_id: Optional[int], automated: bool,
                               previous_status: str, status: str, notes: Optional[str],
                               risk_score: Optional[int]) -> VerificationEvent:
        with self._lock:
            if product_id not in self._products:
                raise NotFoundError("Product not found")
            event = VerificationEvent(
                id=self._next_id("verification_event"),
                productId=product_id,
                actorId=actor_id,
                automated=automated,
                previousStatus=previous_status,
                status=status,
                notes=notes,
                riskScore=risk_score,
                createdAt=_now(),
            )
            self._verification_events[event.id] = event
            return event

    def get_verification_events(self, product_id: int) -> List[VerificationEvent]:
        with self._lock:
            return _oldest_first(e for e in self._verification_events.values() if e.productId == product_id)

    # ---------- PROJECTS ----------

    def get_project(self, project_id: int) -> Optional[Project]:
        with self._lock:
            return self._projects.get(project_id)

    def get_projects(self, limit: int = 10, offset: int = 0) -> List[Project]:
        with self._lock:
            return list(self._projects.values())[offset:offset + limit]

    def get_projects_by_user(self, user_id: int) -> List[Project]:
        with self._lock:
            return [p for p in self._projects.values() if p.userId == user_id]

    def create_project(self, data: ProjectCreate, user_id: int) -> Project:
        with self._lock:
            project = Project(
                id=self._next_id("project"),
                userId=user_id,
                status="open",
                createdAt=_now(),
                **data.model_dump(),
            )
            self._projects[project.id] = project
            return project

    def update_project(self, project_id: int, fields: dict) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            if not project:
                return None
            updated = self._apply(project, fields)
            self._projects[project_id] = updated
            return updated

    # ---------- MESSAGES ----------

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._lock:
            return self._messages.get(message_id)

    def get_messages_by_user(self, user_id: int) -> List[Message]:
        with self._lock:
            return _newest_first(
                m for m in self._messages.values()
                if m.senderId == user_id or m.receiverId == user_id
            )

    def get_conversation(self, user1_id: int, user2_id: int) -> List[Message]:
        with self._lock:
            return _oldest_first(
                m for m in self._messages.values()
                if (m.senderId == user1_id and m.receiverId == user2_id)
                or (m.senderId == user2_id and m.receiverId == user1_id)
            )

    def create_message(self, data: MessageCreate, sender_id: int) -> Message:
        with self._lock:
            message = Message(
                id=self._next_id("message"),
                senderId=sender_id,
                read=False,
                createdAt=_now(),
                **data.model_dump(),
            )
            self._messages[message.id] = message
            return message

    def mark_message_read(self, message_id: int) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            if not message:
                return None
            if not message.read:
                message = message.model_copy(update={"read": True})
                self._messages[message_id] = message
            return message

    def mark_messages_read(self, message_ids: Iterable[int]) -> List[Message]:
        changed = []
        with self._lock:
            for message_id in message_ids:
                message = self._messages.get(message_id)
                if message and not message.read:
                    message = message.model_copy(update={"read": True})
                    self._messages[message_id] = message
                    changed.append(message)
        return changed

    # ---------- NEWS ----------

    def get_news(self, news_id: int) -> Optional[News]:
        with self._lock:
            return self._news.get(news_id)

    def get_all_news(self, limit: int = 10, offset: int = 0) -> List[News]:
        with self._lock:
            return _newest_first(self._news.values())[offset:offset + limit]

    def create_news(self, data: NewsCreate) -> News:
        with self._lock:
            news = News(id=self._next_id("news"), createdAt=_now(), **data.model_dump())
            self._news[news.id] = news
            return news

    # ---------- WAITLIST ----------

    def add_to_waitlist(self, data: WaitlistCreate) -> WaitlistEntry:
        with self._lock:
            if any(e.email == data.email for e in self._waitlist.values()):
                raise ValidationError("Email is already registered in the waitlist")
            entry = WaitlistEntry(id=self._next_id("waitlist"), createdAt=_now(), **data.model_dump())
            self._waitlist[entry.id] = entry
            logger.info(f"[WAITLIST] Added entry #{entry.id}")
            return entry

    def is_email_in_waitlist(self, email: str) -> bool:
        with self._lock:
            return any(e.email == email for e in self._waitlist.values())
