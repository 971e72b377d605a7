"""
Conversation state record.

One ConversationState exists per conversation key (normalized phone,
email, or team fallback). It holds the current product, the product
history, and at most one pending disambiguation object. The record is
persisted with an explicit schema version.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
MAX_RECENT_MESSAGES = 10


class StateSchemaError(Exception):
    """Persisted state carries a schema version this code cannot read."""


class EventType(str, Enum):
    """Customer event types recorded by the sales platform."""
    APPROVED = "APPROVED"
    ABANDONED = "ABANDONED"
    REFUND = "REFUND"


class ConversationMode(str, Enum):
    SUPPORT = "support"
    SALES = "sales"


@dataclass
class ProductHistoryEntry:
    product_id: str
    timestamp: float


@dataclass
class PendingProductConfirmation:
    """A single historical product awaiting a yes/no from the customer."""
    suggested_product_id: str
    suggested_product_name: str
    event_type: EventType
    reason: str = "customer_history"
    original_message: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingProductConfirmation":
        return cls(
            suggested_product_id=data["suggested_product_id"],
            suggested_product_name=data["suggested_product_name"],
            event_type=EventType(data["event_type"]),
            reason=data.get("reason", "customer_history"),
            original_message=data.get("original_message") or "",
            timestamp=float(data["timestamp"]),
        )


@dataclass
class PendingProduct:
    """One numbered entry of a multi-product list (index is 1-based)."""
    index: int
    product_id: str
    product_name: str
    event_type: str


@dataclass
class PendingMultiProductSelection:
    """A numbered product list awaiting the customer's pick."""
    products: List[PendingProduct]
    original_message: str
    original_intent: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def valid_indexes(self) -> Set[int]:
        return {p.index for p in self.products}

    def product_at(self, index: int) -> Optional[PendingProduct]:
        for product in self.products:
            if product.index == index:
                return product
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingMultiProductSelection":
        return cls(
            products=[PendingProduct(**p) for p in data.get("products", [])],
            original_message=data.get("original_message", ""),
            original_intent=data.get("original_intent"),
            timestamp=float(data["timestamp"]),
        )


@dataclass
class PendingContextSwitch:
    """A switch away from the active product awaiting confirmation."""
    from_product_id: str
    from_product_name: str
    from_mode: ConversationMode
    to_product_id: str
    to_product_name: str
    to_mode: ConversationMode
    original_message: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["from_mode"] = self.from_mode.value
        data["to_mode"] = self.to_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingContextSwitch":
        return cls(
            from_product_id=data["from_product_id"],
            from_product_name=data["from_product_name"],
            from_mode=ConversationMode(data["from_mode"]),
            to_product_id=data["to_product_id"],
            to_product_name=data["to_product_name"],
            to_mode=ConversationMode(data["to_mode"]),
            original_message=data.get("original_message") or "",
            timestamp=float(data["timestamp"]),
        )


PendingObject = Union[
    PendingProductConfirmation,
    PendingMultiProductSelection,
    PendingContextSwitch,
]


@dataclass
class ContextUpdate:
    """Outcome of moving the conversation to a product."""
    current_product_id: Optional[str]
    context_switched: bool
    history_summary: List[str]


@dataclass
class ConversationState:
    """
    Per-conversation state.

    The three pending fields are mutually exclusive. They are only set
    through the ``set_pending_*`` methods, each of which clears the
    other two.
    """
    conversation_key: str
    team_id: Optional[str] = None
    current_product_id: Optional[str] = None
    product_history: List[ProductHistoryEntry] = field(default_factory=list)
    purchased_products: Set[str] = field(default_factory=set)
    active_support_product_id: Optional[str] = None
    support_mode_since: Optional[float] = None
    pending_product_confirmation: Optional[PendingProductConfirmation] = None
    pending_context_switch: Optional[PendingContextSwitch] = None
    pending_multi_product_selection: Optional[PendingMultiProductSelection] = None
    last_intent: Optional[str] = None
    recent_messages: List[Dict[str, str]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    schema_version: int = SCHEMA_VERSION

    # ── Pending objects ──

    @property
    def pending(self) -> Optional[PendingObject]:
        return (
            self.pending_product_confirmation
            or self.pending_multi_product_selection
            or self.pending_context_switch
        )

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def clear_pending(self) -> None:
        self.pending_product_confirmation = None
        self.pending_multi_product_selection = None
        self.pending_context_switch = None

    def set_pending_product_confirmation(self, pending: PendingProductConfirmation) -> None:
        self.clear_pending()
        self.pending_product_confirmation = pending

    def set_pending_multi_product_selection(self, pending: PendingMultiProductSelection) -> None:
        self.clear_pending()
        self.pending_multi_product_selection = pending

    def set_pending_context_switch(self, pending: PendingContextSwitch) -> None:
        self.clear_pending()
        self.pending_context_switch = pending

    def expire_stale_pending(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        """Drop the pending object if it is older than ttl_seconds."""
        pending = self.pending
        if pending is None:
            return False
        now = now if now is not None else time.time()
        if now - pending.timestamp <= ttl_seconds:
            return False
        logger.warning(
            f"Expiring stale {type(pending).__name__} for ***{self.conversation_key[-4:]} "
            f"(age {int(now - pending.timestamp)}s)"
        )
        self.clear_pending()
        return True

    # ── Products ──

    def switch_product(self, product_id: str, now: Optional[float] = None) -> ContextUpdate:
        """
        Make product_id the current product.

        History is appended only when the product actually changes.
        """
        switched = product_id != self.current_product_id
        if switched:
            self.product_history.append(
                ProductHistoryEntry(product_id=product_id, timestamp=now or time.time())
            )
            self.current_product_id = product_id
        return ContextUpdate(
            current_product_id=self.current_product_id,
            context_switched=switched,
            history_summary=self.history_summary(),
        )

    def history_summary(self, limit: int = 5) -> List[str]:
        """Most recent distinct products, newest first."""
        seen: List[str] = []
        for entry in reversed(self.product_history):
            if entry.product_id not in seen:
                seen.append(entry.product_id)
            if len(seen) >= limit:
                break
        return seen

    def set_active_support_product(self, product_id: str, now: Optional[float] = None) -> None:
        if self.active_support_product_id != product_id:
            self.active_support_product_id = product_id
            self.support_mode_since = now or time.time()

    def clear_active_support_product(self) -> None:
        self.active_support_product_id = None
        self.support_mode_since = None

    def add_message(self, role: str, content: str) -> None:
        self.recent_messages.append({"role": role, "content": content})
        if len(self.recent_messages) > MAX_RECENT_MESSAGES:
            self.recent_messages = self.recent_messages[-MAX_RECENT_MESSAGES:]

    # ── Serialization ──

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "conversation_key": self.conversation_key,
            "team_id": self.team_id,
            "current_product_id": self.current_product_id,
            "product_history": [asdict(e) for e in self.product_history],
            "purchased_products": sorted(self.purchased_products),
            "active_support_product_id": self.active_support_product_id,
            "support_mode_since": self.support_mode_since,
            "pending_product_confirmation": (
                self.pending_product_confirmation.to_dict()
                if self.pending_product_confirmation else None
            ),
            "pending_context_switch": (
                self.pending_context_switch.to_dict()
                if self.pending_context_switch else None
            ),
            "pending_multi_product_selection": (
                self.pending_multi_product_selection.to_dict()
                if self.pending_multi_product_selection else None
            ),
            "last_intent": self.last_intent,
            "recent_messages": list(self.recent_messages),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationState":
        """
        Rebuild a state from its persisted form.

        Records without a schema_version (or version 1) are the legacy
        layout and are migrated. Versions newer than SCHEMA_VERSION raise
        StateSchemaError.
        """
        version = data.get("schema_version")
        if version is None or version == 1:
            data = _migrate_v1(data)
        elif version > SCHEMA_VERSION:
            raise StateSchemaError(
                f"State schema version {version} is newer than supported {SCHEMA_VERSION}"
            )

        pending_confirmation = data.get("pending_product_confirmation")
        pending_switch = data.get("pending_context_switch")
        pending_multi = data.get("pending_multi_product_selection")

        state = cls(
            conversation_key=data["conversation_key"],
            team_id=data.get("team_id"),
            current_product_id=data.get("current_product_id"),
            product_history=[
                ProductHistoryEntry(product_id=e["product_id"], timestamp=float(e["timestamp"]))
                for e in data.get("product_history", [])
            ],
            purchased_products=set(data.get("purchased_products", [])),
            active_support_product_id=data.get("active_support_product_id"),
            support_mode_since=data.get("support_mode_since"),
            last_intent=data.get("last_intent"),
            recent_messages=list(data.get("recent_messages", [])),
            created_at=float(data.get("created_at") or time.time()),
            updated_at=float(data.get("updated_at") or time.time()),
        )

        # Restore through the setters so a corrupted record holding more
        # than one pending object keeps only one.
        if pending_switch:
            state.set_pending_context_switch(PendingContextSwitch.from_dict(pending_switch))
        if pending_multi:
            state.set_pending_multi_product_selection(
                PendingMultiProductSelection.from_dict(pending_multi)
            )
        if pending_confirmation:
            state.set_pending_product_confirmation(
                PendingProductConfirmation.from_dict(pending_confirmation)
            )
        return state

    @classmethod
    def new(cls, conversation_key: str, team_id: Optional[str] = None) -> "ConversationState":
        return cls(conversation_key=conversation_key, team_id=team_id)


def _ms_to_seconds(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return float(value) / 1000.0


def _migrate_v1(data: Dict[str, Any]) -> Dict[str, Any]:
    """Legacy blob: millisecond timestamps and history items keyed by ``id``."""
    migrated = dict(data)
    migrated["schema_version"] = SCHEMA_VERSION
    migrated["conversation_key"] = data.get("conversation_key") or data.get("conversation_id")
    migrated["product_history"] = [
        {"product_id": item["id"], "timestamp": _ms_to_seconds(item["timestamp"])}
        for item in data.get("product_history", [])
    ]
    migrated["support_mode_since"] = _ms_to_seconds(data.get("support_mode_since"))

    for key in (
        "pending_product_confirmation",
        "pending_context_switch",
        "pending_multi_product_selection",
    ):
        pending = data.get(key)
        if pending:
            pending = dict(pending)
            pending["timestamp"] = _ms_to_seconds(pending["timestamp"])
            pending.setdefault("original_message", "")
            if key == "pending_multi_product_selection":
                pending["products"] = [dict(p) for p in pending.get("products", [])]
            migrated[key] = pending

    logger.info(f"Migrated legacy conversation state for ***{str(migrated['conversation_key'])[-4:]}")
    return migrated
