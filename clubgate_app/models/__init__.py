# clubgate_app/models/__init__.py
# -*- coding: utf-8 -*-
from .payment import Payment
from .subscription import Subscription
from .conversation import ConversationContext


__all__ = [
    "Payment",
    "Subscription",
    "ConversationContext",
]
