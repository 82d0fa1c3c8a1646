from twitchio import eventsub


def get_channel_subscriptions(
    broadcaster_user_id: str, bot_id: str
) -> list[eventsub.SubscriptionPayload]:
    """EventSub subscriptions the command pipeline needs for one channel."""
    return [
        eventsub.ChatMessageSubscription(broadcaster_user_id=broadcaster_user_id, user_id=bot_id),
    ]
