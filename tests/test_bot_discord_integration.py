"""
Unit tests for Discord bot integration with mocked interactions and API.
"""
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock, Mock, patch

import discord

from attempt_tracker.attempt_client import NotFoundError
from attempt_tracker.bot import AttemptBot, run_bot
from attempt_tracker.models import AnswerResult, QuestionSetKind
from attempt_tracker.navigation import NavigationState
from tests.test_fixtures import (
    SAMPLE_TOKEN,
    AsyncTestHelpers,
    MockDiscordObjects,
    TestFixtures,
)


def sent_embed(interaction) -> discord.Embed:
    """The embed of the most recent message sent on a mocked interaction."""
    for mock in (interaction.followup.send, interaction.response.send_message):
        if mock.call_args is not None:
            return mock.call_args.kwargs.get('embed')
    return None


class BotTestCase(unittest.IsolatedAsyncioTestCase):
    """Bot with a temporary session store and a mocked API client per user."""

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.bot = AttemptBot({'storage': {'directory': self.temp_dir}})
        self.bot.config_manager.apply_config(self.bot.app_config)
        self.client = AsyncTestHelpers.create_mock_client()
        self.client.aclose = AsyncMock()
        self.bot.get_client = Mock(return_value=self.client)

    async def asyncTearDown(self):
        for controller in self.bot.controllers.values():
            await controller.close()
            await controller.wait_for_background_saves()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def interaction(self, user_id: int = 67890):
        return MockDiscordObjects.create_mock_interaction(user_id=user_id)

    async def login(self, user_id: int = 67890, school: str = "springfield"):
        await self.bot.handle_login(self.interaction(user_id), SAMPLE_TOKEN, school)

    async def open_practice(self, user_id: int = 67890):
        await self.login(user_id)
        interaction = self.interaction(user_id)
        await self.bot.handle_open(interaction, QuestionSetKind.PRACTICE, "set-1")
        return interaction


class TestAccountCommands(BotTestCase):

    async def test_help_command_success(self):
        interaction = self.interaction()

        await self.bot.handle_help(interaction)

        interaction.response.send_message.assert_called_once()
        embed = sent_embed(interaction)
        self.assertIn("Commands", embed.title)

    async def test_login_creates_student_context(self):
        interaction = self.interaction()

        await self.bot.handle_login(interaction, SAMPLE_TOKEN, "springfield")

        context = self.bot.contexts[67890]
        self.assertTrue(context.is_student)
        self.assertEqual(context.tenant, "springfield")
        self.assertEqual(sent_embed(interaction).title, "🔐 Signed in")

    async def test_login_with_invalid_token(self):
        interaction = self.interaction()

        await self.bot.handle_login(interaction, "not-a-token", None)

        self.assertNotIn(67890, self.bot.contexts)
        self.assertEqual(sent_embed(interaction).title, "❌ Error")

    async def test_relogin_refused_during_attempt(self):
        await self.open_practice()
        self.bot.clients[67890] = self.client
        interaction = self.interaction()

        await self.bot.handle_login(interaction, SAMPLE_TOKEN, "shelbyville")

        self.assertEqual(sent_embed(interaction).title, "⚠️ Warning")
        self.assertEqual(self.bot.contexts[67890].tenant, "springfield")
        self.client.aclose.assert_not_awaited()
        self.assertIs(self.bot.controllers[67890].state, NavigationState.READY)

    async def test_logout_clears_user_state(self):
        await self.open_practice()
        self.bot.clients[67890] = self.client

        await self.bot.handle_logout(self.interaction())

        self.assertNotIn(67890, self.bot.contexts)
        self.assertNotIn(67890, self.bot.controllers)
        self.client.aclose.assert_awaited_once()

    async def test_open_requires_login(self):
        interaction = self.interaction()

        await self.bot.handle_open(interaction, QuestionSetKind.TEST, "set-1")

        self.assertEqual(sent_embed(interaction).title, "❌ Error")
        self.client.fetch_question_set.assert_not_awaited()


class TestAttemptCommands(BotTestCase):

    async def test_open_practice_shows_first_question(self):
        interaction = await self.open_practice()

        controller = self.bot.controllers[67890]
        self.assertIs(controller.state, NavigationState.READY)
        self.assertEqual(controller.persistence.tenant, "springfield")
        self.assertEqual(controller.persistence.grace_seconds, 10)
        interaction.response.defer.assert_awaited_once()
        self.assertEqual(sent_embed(interaction).title, "Question 1 of 4")

    async def test_failed_open_leaves_no_controller(self):
        self.client.fetch_question_set.side_effect = NotFoundError("Practice not found", 404)
        await self.login()

        await self.bot.handle_open(self.interaction(), QuestionSetKind.PRACTICE, "missing")

        self.assertNotIn(67890, self.bot.controllers)

    async def test_second_attempt_is_refused_while_one_is_active(self):
        await self.open_practice()
        interaction = self.interaction()

        await self.bot.handle_open(interaction, QuestionSetKind.TEST, "other-set")

        self.assertEqual(sent_embed(interaction).title, "⚠️ Warning")
        self.assertEqual(self.client.fetch_question_set.await_count, 1)

    async def test_answer_and_navigate(self):
        await self.open_practice()

        await self.bot.handle_answer(self.interaction(), "B")
        interaction = self.interaction()
        await self.bot.handle_move(interaction, 1)

        controller = self.bot.controllers[67890]
        self.assertEqual(controller.current_index, 1)
        self.assertEqual(sent_embed(interaction).title, "Question 2 of 4")

        await controller.wait_for_background_saves()
        self.client.save_answer.assert_awaited_once_with(QuestionSetKind.PRACTICE, "attempt-1", "q1", "B")

    async def test_goto_is_one_based(self):
        await self.open_practice()

        await self.bot.handle_goto(self.interaction(), 3)

        self.assertEqual(self.bot.controllers[67890].current_index, 2)

    async def test_choose_toggles_multi_select(self):
        await self.open_practice()
        await self.bot.handle_goto(self.interaction(), 2)

        await self.bot.handle_answer(self.interaction(), "A", toggle=True)
        await self.bot.handle_answer(self.interaction(), "C", toggle=True)

        self.assertEqual(self.bot.controllers[67890].current_answer, "A,C")

    async def test_commands_without_attempt_warn(self):
        interaction = self.interaction()

        await self.bot.handle_move(interaction, 1)

        self.assertEqual(sent_embed(interaction).title, "⚠️ Warning")

    async def test_reveal_shows_result(self):
        await self.open_practice()
        await self.bot.handle_answer(self.interaction(), "A")
        self.client.submit_answer.return_value = AnswerResult(is_correct=False, correct_answer="B")

        interaction = self.interaction()
        await self.bot.handle_reveal(interaction)

        embed = sent_embed(interaction)
        self.assertIn("Correct answer: B", embed.fields[-1].value)

        answer = self.interaction()
        await self.bot.handle_answer(answer, "B")
        self.assertEqual(sent_embed(answer).title, "⚠️ Warning")

    async def test_submit_finishes_attempt(self):
        await self.open_practice()
        interaction = self.interaction()

        await self.bot.handle_submit(interaction)

        self.client.finalize.assert_awaited_once_with(QuestionSetKind.PRACTICE, "attempt-1")
        self.assertNotIn(67890, self.bot.controllers)
        self.assertEqual(self.bot.finished_attempts, {"attempt-1": QuestionSetKind.PRACTICE})
        self.assertEqual(sent_embed(interaction).title, "📊 Results")

    async def test_cancel_allows_another_attempt(self):
        await self.open_practice()
        interaction = self.interaction()

        await self.bot.handle_cancel(interaction)

        self.assertNotIn(67890, self.bot.controllers)
        self.assertEqual(sent_embed(interaction).title, "🚪 Cancelled")
        self.client.finalize.assert_not_awaited()

        await self.bot.handle_open(self.interaction(), QuestionSetKind.TEST, "other-set")
        self.assertIn(67890, self.bot.controllers)
        self.assertEqual(self.client.fetch_question_set.await_count, 2)

    async def test_cancel_timed_test_drops_session_record(self):
        self.client.fetch_question_set.return_value = TestFixtures.create_question_set(QuestionSetKind.TEST, 600)
        await self.login()
        await self.bot.handle_open(self.interaction(), QuestionSetKind.TEST, "set-1")
        persistence = self.bot.get_persistence(67890)
        self.assertIsNotNone(persistence.load("set-1"))

        await self.bot.handle_cancel(self.interaction())

        self.assertIsNone(persistence.load("set-1"))

    async def test_cancel_without_attempt_warns(self):
        interaction = self.interaction()

        await self.bot.handle_cancel(interaction)

        self.assertEqual(sent_embed(interaction).title, "⚠️ Warning")

    async def test_status_without_attempt(self):
        interaction = self.interaction()

        await self.bot.handle_status(interaction)

        self.assertIn("no attempt", sent_embed(interaction).description)

    async def test_users_have_separate_attempts(self):
        await self.open_practice(user_id=1)
        await self.open_practice(user_id=2)
        await self.bot.handle_move(self.interaction(1), 2)

        self.assertEqual(self.bot.controllers[1].current_index, 2)
        self.assertEqual(self.bot.controllers[2].current_index, 0)


class TestReviewCommand(BotTestCase):

    async def test_review_sends_report(self):
        await self.login()
        self.client.fetch_completed.return_value = TestFixtures.create_attempt()
        interaction = self.interaction()

        await self.bot.handle_review(interaction, QuestionSetKind.PRACTICE, "attempt-1")

        report = interaction.followup.send.call_args.args[0]
        self.assertIn("--- SUMMARY ---", report)

    async def test_review_not_found(self):
        await self.login()
        self.client.fetch_completed.side_effect = NotFoundError("Attempt not found", 404)
        interaction = self.interaction()

        await self.bot.handle_review(interaction, QuestionSetKind.PRACTICE, "other")

        self.assertEqual(sent_embed(interaction).description, "Attempt not found")

    async def test_review_uses_kind_remembered_at_submit(self):
        await self.login()
        self.bot.remember_attempt("st-9", QuestionSetKind.TEST)
        self.client.fetch_completed.return_value = TestFixtures.create_attempt()

        await self.bot.handle_review_request(self.interaction(), "st-9", "practice")

        self.client.fetch_completed.assert_awaited_once_with(QuestionSetKind.TEST, "st-9")

    async def test_review_unknown_attempt_uses_given_kind(self):
        await self.login()
        self.client.fetch_completed.return_value = TestFixtures.create_attempt()

        await self.bot.handle_review_request(self.interaction(), "st-9", "test")

        self.client.fetch_completed.assert_awaited_once_with(QuestionSetKind.TEST, "st-9")

    async def test_review_unknown_attempt_without_kind_asks(self):
        await self.login()
        interaction = self.interaction()

        await self.bot.handle_review_request(interaction, "st-9")

        self.assertEqual(sent_embed(interaction).title, "⚠️ Warning")
        self.client.fetch_completed.assert_not_awaited()


class TestResponseHelpers(BotTestCase):

    async def test_error_response_uses_followup_after_defer(self):
        interaction = self.interaction()
        interaction.response.is_done.return_value = True

        await self.bot.send_error_response(interaction, "Boom")

        interaction.followup.send.assert_awaited_once()
        interaction.response.send_message.assert_not_called()

    async def test_discord_error_is_logged(self):
        interaction = self.interaction()
        interaction.response.send_message.side_effect = discord.HTTPException(Mock(status=500), "fail")

        with self.assertLogs('attempt_tracker.bot', level='ERROR'):
            await self.bot.send_info_response(interaction, "Hello")


class TestRunBot(unittest.IsolatedAsyncioTestCase):

    async def test_run_bot_without_token(self):
        with self.assertLogs('attempt_tracker.bot', level='ERROR'):
            await run_bot(None)

    async def test_run_bot_invalid_token(self):
        with patch.object(AttemptBot, 'start', AsyncMock(side_effect=discord.LoginFailure())), \
                patch.object(AttemptBot, 'close', AsyncMock()):
            with self.assertLogs('attempt_tracker.bot', level='ERROR') as logs:
                await run_bot("bad-token")
        self.assertIn("Invalid bot token", logs.output[0])


if __name__ == '__main__':
    unittest.main()
