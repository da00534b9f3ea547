"""Conference room management: conversational criteria, room status, push subscriptions."""
