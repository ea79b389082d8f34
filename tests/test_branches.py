"""
Tests for BranchManager: threads rooted at existing messages.
"""
import pytest

from polychat.core.exceptions import DataError

CLAUDE = ("anthropic", "claude-3-haiku-20240307")


async def base_conversation(store):
    conversation = await store.create_conversation("Branching", "openai", "gpt-4o")
    question = await store.append_message(conversation.id, "user", "Name a colour", provider="openai", model="gpt-4o")
    answer = await store.append_message(conversation.id, "assistant", "Blue", provider="openai", model="gpt-4o")
    return conversation, question, answer


class TestBranching:
    """Creating branches and reading them back."""

    @pytest.mark.asyncio
    async def test_branching_point_has_original_and_alternate_replies(self, store, branches):
        conversation, question, answer = await base_conversation(store)

        handle = await branches.create_branch_from_message(
            conversation.id, question.id, "Name a colour", *CLAUDE
        )
        alternate = await branches.add_branch_response(
            conversation.id, handle.message_id, handle.thread_id, "Green", *CLAUDE
        )

        point = await branches.get_branching_point(conversation.id, question.id)
        replies = {m.id for m in point if m.role == "assistant"}

        assert replies == {answer.id, alternate.id}
        assert handle.message_id in {m.id for m in point}

    @pytest.mark.asyncio
    async def test_branch_messages_are_tagged(self, store, branches):
        conversation, question, _ = await base_conversation(store)

        handle = await branches.create_branch_from_message(
            conversation.id, question.id, "Try again", *CLAUDE
        )
        reply = await branches.add_branch_response(
            conversation.id, handle.message_id, handle.thread_id, "Red", *CLAUDE, tokens=3
        )
        branch_user = await store.get_message(handle.message_id)

        assert branch_user.thread_id == handle.thread_id
        assert branch_user.parent_message_id == question.id
        assert branch_user.branch_group == question.id
        assert reply.thread_id == handle.thread_id
        assert reply.parent_message_id == handle.message_id
        assert reply.branch_group == question.id
        assert reply.tokens == 3
        assert reply.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_each_branch_gets_its_own_thread(self, store, branches):
        conversation, question, _ = await base_conversation(store)

        first = await branches.create_branch_from_message(conversation.id, question.id, "a", *CLAUDE)
        second = await branches.create_branch_from_message(conversation.id, question.id, "b", *CLAUDE)

        assert first.thread_id != second.thread_id

    @pytest.mark.asyncio
    async def test_message_tree_lists_main_thread_first(self, store, branches):
        conversation, question, answer = await base_conversation(store)
        handle = await branches.create_branch_from_message(
            conversation.id, question.id, "Again", *CLAUDE
        )
        reply = await branches.add_branch_response(
            conversation.id, handle.message_id, handle.thread_id, "Yellow", *CLAUDE
        )
        follow_up = await store.append_message(conversation.id, "user", "Why blue?")

        tree = await branches.get_message_tree(conversation.id)

        assert [m.id for m in tree] == [
            question.id, answer.id, follow_up.id, handle.message_id, reply.id,
        ]

    @pytest.mark.asyncio
    async def test_thread_messages(self, store, branches):
        conversation, question, answer = await base_conversation(store)
        handle = await branches.create_branch_from_message(
            conversation.id, question.id, "Again", *CLAUDE
        )
        reply = await branches.add_branch_response(
            conversation.id, handle.message_id, handle.thread_id, "Yellow", *CLAUDE
        )

        main = await branches.get_thread_messages(conversation.id)
        thread = await branches.get_thread_messages(conversation.id, handle.thread_id)

        assert [m.id for m in main] == [question.id, answer.id]
        assert [m.id for m in thread] == [handle.message_id, reply.id]

    @pytest.mark.asyncio
    async def test_list_threads_groups_branch_messages(self, store, branches):
        conversation, question, answer = await base_conversation(store)
        first = await branches.create_branch_from_message(conversation.id, question.id, "a", *CLAUDE)
        await branches.add_branch_response(conversation.id, first.message_id, first.thread_id, "A", *CLAUDE)
        second = await branches.create_branch_from_message(
            conversation.id, answer.id, "b", "google", "gemini-1.5-flash"
        )

        threads = await branches.list_threads(conversation.id)

        assert [t.thread_id for t in threads] == [first.thread_id, second.thread_id]
        assert len(threads[0].messages) == 2
        assert threads[0].parent_message_id == question.id
        assert threads[1].provider == "google"
        assert threads[1].to_dict()["parentMessageId"] == answer.id


class TestBranchErrors:
    """Invalid branch references."""

    @pytest.mark.asyncio
    async def test_branch_from_missing_message(self, store, branches):
        conversation, _, _ = await base_conversation(store)
        with pytest.raises(DataError):
            await branches.create_branch_from_message(conversation.id, "missing", "x", *CLAUDE)

    @pytest.mark.asyncio
    async def test_response_with_wrong_thread(self, store, branches):
        conversation, question, _ = await base_conversation(store)
        handle = await branches.create_branch_from_message(conversation.id, question.id, "x", *CLAUDE)

        with pytest.raises(DataError):
            await branches.add_branch_response(
                conversation.id, handle.message_id, "other-thread", "y", *CLAUDE
            )

    @pytest.mark.asyncio
    async def test_branching_point_of_missing_message(self, store, branches):
        conversation, _, _ = await base_conversation(store)
        with pytest.raises(DataError):
            await branches.get_branching_point(conversation.id, "missing")
