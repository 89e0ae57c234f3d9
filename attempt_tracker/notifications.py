"""
User-facing notifications ("toasts").

The navigation controller reports outcomes through a Notifier; the Discord
front end sends them as ephemeral embeds, or as a direct message once the
interaction has expired.
"""
import logging
import time

import discord

SUCCESS_COLOR = 0x00ff00
INFO_COLOR = 0x6699ff
WARNING_COLOR = 0xffaa00
ERROR_COLOR = 0xff0000


class Notifier:
    """Notification sink that only logs. Subclasses deliver to a user."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def success(self, message: str) -> None:
        self.logger.info(f"[success] {message}")

    async def info(self, message: str) -> None:
        self.logger.info(f"[info] {message}")

    async def warning(self, message: str) -> None:
        self.logger.warning(f"[warning] {message}")

    async def error(self, message: str) -> None:
        self.logger.error(f"[error] {message}")


class InteractionNotifier(Notifier):
    """Sends notifications as ephemeral embeds on a Discord interaction."""

    def __init__(self, interaction: discord.Interaction):
        super().__init__()
        self.interaction = interaction

    async def _send(self, title: str, message: str, color: int) -> None:
        embed = discord.Embed(title=title, description=message, color=color)
        # Interaction tokens stop working 15 minutes after the command
        if self.interaction.is_expired():
            await self._send_direct(embed)
            return
        try:
            if self.interaction.response.is_done():
                await self.interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await self.interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send notification embed: {e}")
            # Fallback to simple message
            try:
                await self.interaction.followup.send(f"{title}: {message}", ephemeral=True)
            except discord.HTTPException:
                self.logger.error("Failed to send fallback notification")
                await self._send_direct(embed)

    async def _send_direct(self, embed: discord.Embed) -> None:
        """Deliver by direct message once the interaction can no longer be answered."""
        try:
            await self.interaction.user.send(embed=embed)
        except discord.HTTPException as e:
            self.logger.error(
                f"Failed to send direct message notification: {e}",
                extra={
                    'event_type': 'notification_undelivered',
                    'user_id': self.interaction.user.id,
                    'timestamp': time.time()
                }
            )

    async def success(self, message: str) -> None:
        await super().success(message)
        await self._send("✅ Success", message, SUCCESS_COLOR)

    async def info(self, message: str) -> None:
        await super().info(message)
        await self._send("ℹ️ Information", message, INFO_COLOR)

    async def warning(self, message: str) -> None:
        await super().warning(message)
        await self._send("⚠️ Warning", message, WARNING_COLOR)

    async def error(self, message: str) -> None:
        await super().error(message)
        await self._send("❌ Error", message, ERROR_COLOR)
