"""
Discord notification transports.

This package contains:
- Webhook and bot-channel notifiers for scheduled notifications
- Deferred interaction replies for the /stock slash command
- Slash command registration and interaction signature verification
"""
