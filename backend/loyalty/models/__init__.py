from .auth import User, SessionToken
from .promotions import Promotion, PromotionUsage
from .events import Event, event_organizers, event_guests
from .transactions import Transaction, transaction_promotions
from .security import SecurityEvent

__all__ = [
    'User', 'SessionToken',
    'Promotion', 'PromotionUsage',
    'Event', 'event_organizers', 'event_guests',
    'Transaction', 'transaction_promotions',
    'SecurityEvent',
]
