import discord
from discord.ext import commands
import logging
from pathlib import Path
from typing import Dict, Literal, Optional

from .attempt_client import AttemptClient
from .config_manager import ConfigManager
from .models import Question, QuestionSetKind
from .navigation import InvalidNavigationStateError, NavigationController, NavigationState, format_time
from .notifications import InteractionNotifier
from .persistence import JsonFileStore, PersistenceBridge
from .review import format_review_report, load_review
from .session_context import SessionContext

logger = logging.getLogger(__name__)


class AttemptBot(commands.Bot):
    """Discord front end for taking tests and practices"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager = ConfigManager()

        # Per Discord user state
        self.contexts: Dict[int, SessionContext] = {}
        self.clients: Dict[int, AttemptClient] = {}
        self.controllers: Dict[int, NavigationController] = {}
        # Attempt kind by attempt id, for /review after submission
        self.finished_attempts: Dict[str, QuestionSetKind] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")
        if self.app_config:
            self.config_manager.apply_config(self.app_config)
        self.config_manager.apply_environment()
        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="login", description="Sign in with your school account token")
        async def login_command(interaction: discord.Interaction, token: str, school: Optional[str] = None):
            await self.handle_login(interaction, token, school)

        @self.tree.command(name="logout", description="Sign out and forget your token")
        async def logout_command(interaction: discord.Interaction):
            await self.handle_logout(interaction)

        @self.tree.command(name="take_test", description="Start or resume a test")
        async def take_test_command(interaction: discord.Interaction, test_id: str):
            await self.handle_open(interaction, QuestionSetKind.TEST, test_id)

        @self.tree.command(name="practice", description="Start a practice")
        async def practice_command(interaction: discord.Interaction, practice_id: str):
            await self.handle_open(interaction, QuestionSetKind.PRACTICE, practice_id)

        @self.tree.command(name="answer", description="Answer the current question")
        async def answer_command(interaction: discord.Interaction, value: str):
            await self.handle_answer(interaction, value)

        @self.tree.command(name="choose", description="Toggle an option of a multi-select question")
        async def choose_command(interaction: discord.Interaction, option: str):
            await self.handle_answer(interaction, option, toggle=True)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_move(interaction, 1)

        @self.tree.command(name="prev", description="Go to the previous question")
        async def prev_command(interaction: discord.Interaction):
            await self.handle_move(interaction, -1)

        @self.tree.command(name="goto", description="Jump to a question by number")
        async def goto_command(interaction: discord.Interaction, number: int):
            await self.handle_goto(interaction, number)

        @self.tree.command(name="flag", description="Flag or unflag the current question")
        async def flag_command(interaction: discord.Interaction):
            await self.handle_flag(interaction)

        @self.tree.command(name="reveal", description="Show the answer to the current practice question")
        async def reveal_command(interaction: discord.Interaction):
            await self.handle_reveal(interaction)

        @self.tree.command(name="submit", description="Submit your answers")
        async def submit_command(interaction: discord.Interaction):
            await self.handle_submit(interaction)

        @self.tree.command(name="status", description="Show your progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="cancel", description="Leave the current attempt without submitting")
        async def cancel_command(interaction: discord.Interaction):
            await self.handle_cancel(interaction)

        @self.tree.command(name="review", description="Review a submitted attempt")
        async def review_command(
            interaction: discord.Interaction,
            attempt_id: str,
            kind: Optional[Literal["test", "practice"]] = None
        ):
            await self.handle_review_request(interaction, attempt_id, kind)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        for controller in self.controllers.values():
            await controller.close()
        for client in self.clients.values():
            await client.aclose()
        await super().close()

    # ------------------------------------------------------------------
    # Per user plumbing
    # ------------------------------------------------------------------

    def get_client(self, user_id: int) -> AttemptClient:
        client = self.clients.get(user_id)
        if client is None:
            settings = self.config_manager.get_settings()
            client = AttemptClient(
                settings.api_base_url,
                self.contexts.setdefault(user_id, SessionContext()),
                timeout=settings.request_timeout
            )
            self.clients[user_id] = client
        return client

    def get_persistence(self, user_id: int) -> PersistenceBridge:
        settings = self.config_manager.get_settings()
        context = self.contexts.get(user_id) or SessionContext()
        store = JsonFileStore(str(Path(settings.storage_directory) / f"{user_id}.json"))
        return PersistenceBridge(
            store,
            tenant=context.tenant,
            prefix=settings.storage_prefix,
            grace_seconds=settings.resume_grace_seconds
        )

    def remember_attempt(self, attempt_id: str, kind: QuestionSetKind) -> None:
        self.finished_attempts[attempt_id] = kind

    def get_controller(self, interaction: discord.Interaction) -> Optional[NavigationController]:
        controller = self.controllers.get(interaction.user.id)
        if controller is not None:
            controller.notifier = InteractionNotifier(interaction)
        return controller

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_help(self, interaction: discord.Interaction):
        embed = discord.Embed(
            title="📝 Test & Practice Commands",
            description="Take your school's tests and practices from Discord.",
            color=0x6699ff
        )
        embed.add_field(
            name="🔐 Account",
            value="`/login <token> [school]` · `/logout`",
            inline=False
        )
        embed.add_field(
            name="🎯 Start",
            value="`/take_test <id>` · `/practice <id>`",
            inline=False
        )
        embed.add_field(
            name="✏️ Answer",
            value="`/answer <value>` · `/choose <option>` · `/flag` · `/reveal` (practice only)",
            inline=False
        )
        embed.add_field(
            name="🧭 Navigate",
            value="`/next` · `/prev` · `/goto <n>` · `/status` · `/submit` · `/cancel`",
            inline=False
        )
        embed.add_field(name="📊 Results", value="`/review <attempt_id> [kind]`", inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_login(self, interaction: discord.Interaction, token: str, school: Optional[str]):
        user_id = interaction.user.id
        context = SessionContext(token=token, role="STUDENT", institution_slug=school)
        if not context.is_authenticated:
            await self.send_error_response(interaction, "That token is not valid. Please copy it again from the school portal.")
            return

        # The active controller holds the current client
        controller = self.controllers.get(user_id)
        if controller is not None and controller.state in (NavigationState.READY, NavigationState.SUBMITTING):
            await self.send_warning_response(
                interaction,
                "You have an attempt in progress. `/submit` or `/cancel` it before signing in again."
            )
            return

        old_client = self.clients.pop(user_id, None)
        if old_client is not None:
            await old_client.aclose()
        self.contexts[user_id] = context
        await self.send_info_response(interaction, "You are signed in.", "🔐 Signed in")

    async def handle_logout(self, interaction: discord.Interaction):
        user_id = interaction.user.id
        controller = self.controllers.pop(user_id, None)
        if controller is not None:
            await controller.close()
        client = self.clients.pop(user_id, None)
        if client is not None:
            await client.aclose()
        context = self.contexts.pop(user_id, None)
        if context is not None:
            context.logout()
        await self.send_info_response(interaction, "You are signed out.", "👋 Signed out")

    async def handle_open(self, interaction: discord.Interaction, kind: QuestionSetKind, question_set_id: str):
        """Open a test or practice: one active attempt per user."""
        user_id = interaction.user.id
        context = self.contexts.get(user_id)
        if context is None or not context.is_student:
            await self.send_error_response(interaction, "Please `/login` with your student account first.")
            return

        existing = self.controllers.get(user_id)
        if existing is not None and existing.state in (NavigationState.READY, NavigationState.SUBMITTING):
            if existing.question_set_id != question_set_id:
                await self.send_warning_response(
                    interaction,
                    "You already have an attempt in progress. `/submit` or `/cancel` it before starting another."
                )
                return
            existing.notifier = InteractionNotifier(interaction)
            await self.send_question(interaction, existing)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        controller = NavigationController(
            self.get_client(user_id),
            kind,
            question_set_id,
            persistence=self.get_persistence(user_id),
            notifier=InteractionNotifier(interaction),
            on_done=lambda attempt_id: self.remember_attempt(attempt_id, kind),
        )
        self.controllers[user_id] = controller

        if not await controller.load():
            self.controllers.pop(user_id, None)
            return
        await self.send_question(interaction, controller)

    async def handle_answer(self, interaction: discord.Interaction, value: str, toggle: bool = False):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        try:
            accepted = controller.toggle_choice(value) if toggle else controller.select(value)
        except InvalidNavigationStateError as e:
            await self.send_warning_response(interaction, str(e))
            return
        if not accepted:
            await self.send_warning_response(interaction, "The answer to this question has already been shown.")
            return
        await self.send_question(interaction, controller)

    async def handle_move(self, interaction: discord.Interaction, step: int):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        try:
            controller.jump(controller.current_index + step)
        except InvalidNavigationStateError as e:
            await self.send_warning_response(interaction, str(e))
            return
        await self.send_question(interaction, controller)

    async def handle_goto(self, interaction: discord.Interaction, number: int):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        try:
            controller.jump(number - 1)
        except InvalidNavigationStateError as e:
            await self.send_warning_response(interaction, str(e))
            return
        await self.send_question(interaction, controller)

    async def handle_flag(self, interaction: discord.Interaction):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        try:
            flagged = controller.toggle_flag()
        except InvalidNavigationStateError as e:
            await self.send_warning_response(interaction, str(e))
            return
        message = "Question flagged for review." if flagged else "Flag removed."
        await self.send_info_response(interaction, message, "🚩 Flag")

    async def handle_reveal(self, interaction: discord.Interaction):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        if controller.kind is not QuestionSetKind.PRACTICE:
            await self.send_warning_response(interaction, "Answers can only be shown in practice mode.")
            return
        if controller.reveal_pending:
            await self.send_info_response(interaction, "Checking your answer...")
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await controller.reveal()
        except InvalidNavigationStateError as e:
            await self.send_warning_response(interaction, str(e))
            return
        if result is not None:
            await self.send_question(interaction, controller)

    async def handle_submit(self, interaction: discord.Interaction):
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        if controller.state is not NavigationState.READY:
            await self.send_info_response(interaction, "Your answers are already being submitted.")
            return

        unanswered = controller.store.unanswered_count
        await interaction.response.defer(ephemeral=True, thinking=True)
        if unanswered:
            await self.send_warning_response(
                interaction,
                f"You answered {controller.question_count - unanswered} out of "
                f"{controller.question_count} questions."
            )
        if await controller.submit():
            self.controllers.pop(interaction.user.id, None)
            await self.send_info_response(
                interaction,
                f"Use `/review {controller.attempt_id}` to see your results.",
                "📊 Results"
            )

    async def handle_cancel(self, interaction: discord.Interaction):
        """Leave the active attempt. Saved answers stay on the server; it will not be resumed."""
        controller = await self._active_controller(interaction)
        if controller is None:
            return
        if not await controller.cancel():
            await self.send_info_response(interaction, "Your answers are already being submitted.")
            return

        self.controllers.pop(interaction.user.id, None)
        await controller.close()
        await self.send_info_response(
            interaction,
            f"You left {controller.question_set.title or controller.question_set_id}. It was not submitted.",
            "🚪 Cancelled"
        )

    async def handle_status(self, interaction: discord.Interaction):
        controller = self.controllers.get(interaction.user.id)
        if controller is None:
            await self.send_info_response(interaction, "You have no attempt in progress.", "📊 Status")
            return
        await self.send_info_response(interaction, controller.status_summary(), "📊 Status")

    def resolve_review_kind(self, attempt_id: str, kind: Optional[str] = None) -> Optional[QuestionSetKind]:
        """Kind remembered at submission, else the one the student named."""
        remembered = self.finished_attempts.get(attempt_id)
        if remembered is not None:
            return remembered
        if kind is None:
            return None
        return QuestionSetKind(kind)

    async def handle_review_request(self, interaction: discord.Interaction, attempt_id: str, kind: Optional[str] = None):
        resolved = self.resolve_review_kind(attempt_id, kind)
        if resolved is None:
            await self.send_warning_response(
                interaction,
                "I don't know whether that attempt is a test or a practice. "
                "Run `/review` again and pick the `kind`."
            )
            return
        await self.handle_review(interaction, resolved, attempt_id)

    async def handle_review(self, interaction: discord.Interaction, kind: QuestionSetKind, attempt_id: str):
        user_id = interaction.user.id
        if user_id not in self.contexts:
            await self.send_error_response(interaction, "Please `/login` first.")
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        attempt = await load_review(self.get_client(user_id), InteractionNotifier(interaction), kind, attempt_id)
        if attempt is None:
            return

        report = format_review_report(attempt, "Practice" if kind is QuestionSetKind.PRACTICE else "Test")
        if len(report) > 1900:
            report = report[:1900] + "\n..."
        await interaction.followup.send(f"```\n{report}\n```", ephemeral=True)

    async def _active_controller(self, interaction: discord.Interaction) -> Optional[NavigationController]:
        controller = self.get_controller(interaction)
        if controller is None:
            await self.send_warning_response(
                interaction, "You have no attempt in progress. Use `/take_test` or `/practice` first."
            )
        return controller

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def build_question_embed(self, controller: NavigationController) -> discord.Embed:
        question: Question = controller.current_question
        title = controller.question_set.title or controller.question_set_id
        embed = discord.Embed(
            title=f"Question {controller.current_index + 1} of {controller.question_count}",
            description=question.text,
            color=0x00ff00
        )
        embed.set_author(name=title)

        if question.options:
            selected = {part.strip() for part in controller.current_answer.split(",") if part.strip()}
            result = controller.current_result
            lines = []
            for key, label in question.options.items():
                marker = "🔘" if key in selected else "⚪"
                if result is not None and key == result.correct_answer.strip():
                    marker = "✅"
                elif result is not None and key in selected and not result.is_correct:
                    marker = "❌"
                lines.append(f"{marker} **{key}** {label or key}")
            embed.add_field(name="Options", value="\n".join(lines), inline=False)
        else:
            embed.add_field(name="Your answer", value=controller.current_answer or "Not answered yet", inline=False)

        result = controller.current_result
        if result is not None:
            embed.add_field(
                name="Result",
                value=("✅ Correct!" if result.is_correct else f"❌ Incorrect. Correct answer: {result.correct_answer}"),
                inline=False
            )

        footer = [f"Answered {controller.store.answered_count}/{controller.question_count}"]
        if controller.store.is_flagged(question.id):
            footer.append("🚩 Flagged")
        if controller.remaining_seconds is not None:
            footer.append(f"⏱️ {format_time(controller.remaining_seconds)} left")
        embed.set_footer(text=" | ".join(footer))
        return embed

    async def send_question(self, interaction: discord.Interaction, controller: NavigationController):
        embed = self.build_question_embed(controller)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send question embed: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_embed(interaction, message, title, 0xff0000)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, message, title, 0x6699ff)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, message, title, 0xffaa00)

    async def _send_embed(self, interaction: discord.Interaction, message: str, title: str, color: int):
        embed = discord.Embed(title=title, description=message, color=color)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response to user: {title}")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = AttemptBot(config)
    try:
        logger.info("Starting attempt bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
