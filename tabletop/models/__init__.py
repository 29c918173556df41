from .base import Base
from . import (  # noqa: F401
    user_account, campaign, character, scene, turn_order,
    scheduled_event, notification,
)
