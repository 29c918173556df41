"""Live channel names and event types."""

# Client -> server message types
MSG_HEARTBEAT = "heartbeat"
MSG_SUBSCRIBE = "subscribe"
MSG_UNSUBSCRIBE = "unsubscribe"

# Server -> client message types
MSG_HEARTBEAT_ACK = "heartbeat_ack"
MSG_SUBSCRIBED = "subscribed"
MSG_UNSUBSCRIBED = "unsubscribed"
MSG_EVENT = "event"
MSG_ERROR = "error"

# Events published on channels
TURN_ORDER_INITIALIZED = "turnOrder:initialized"
TURN_ORDER_UPDATED = "turnOrder:updated"
TURN_ORDER_ENDED = "turnOrder:ended"
TURN_UPDATE = "turn-update"
NOTIFICATION_RECEIVED = "notification-received"
SOUND_NOTIFICATION = "sound-notification"
DRAMATIC_SOUND = "dramatic-sound"


def campaign_channel(campaign_id: str) -> str:
    return f"campaign-{campaign_id}"


def user_channel(user_id: int) -> str:
    return f"user-{user_id}"
