"""Tests for message routing and the respond() turn lifecycle."""

import asyncio
import dataclasses
import threading
import time

import pytest

from campus_assistant.context_manager import UserContext
from campus_assistant.orchestrator import APOLOGY, ConversationOrchestrator
from campus_assistant.sanitizer import SAFE_REFUSAL
from campus_assistant.store import InMemoryStore

STANFORD = "Stanford University"


class CountingStore(InMemoryStore):
    """In-memory store that counts general listing searches."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.search_calls = 0

    async def get_listings(self, listing_filter, text=None, limit=20):
        self.search_calls += 1
        return await super().get_listings(listing_filter, text, limit)


class ExplodingExtractor:
    def extract(self, message, user_university=None):
        raise RuntimeError("extractor bug")


class SlowGenerator:
    def generate_text(self, prompt):
        time.sleep(0.5)
        return "too late"


def context_for(orchestrator, user_id="user-1", university=STANFORD, message=None):
    manager = orchestrator.context_manager
    context = manager.create_initial_context(user=UserContext(id=user_id, university=university))
    if message is not None:
        context = manager.add_message(context, "user", message)
    return context


async def test_my_listings_empty_state_skips_search(settings, listings):
    """Test a user with no posts gets the nudge without a general search."""
    store = CountingStore()
    store.add_listings(listings)
    orchestrator = ConversationOrchestrator(settings, store, None)

    reply = await orchestrator.process_message("show my posts", context_for(orchestrator, "user-2"))

    assert reply.startswith("You don't have any active listings yet.")
    assert store.search_calls == 0


async def test_my_listings(orchestrator):
    """Test the seller's own listings are listed."""
    reply = await orchestrator.process_message("what are my listings?", context_for(orchestrator))

    assert reply.startswith("You have 1 active listing:")
    assert "Old desk lamp" in reply


async def test_search_without_results(orchestrator):
    """Test an unmatched search uses the no-results template."""
    reply = await orchestrator.process_message("bikes", context_for(orchestrator))

    assert 'I couldn\'t find any listings matching "bikes" in the entire marketplace.' in reply


async def test_typo_search_includes_correction(orchestrator):
    """Test a misspelled keyword is corrected and searched."""
    reply = await orchestrator.process_message("laptp", context_for(orchestrator))

    assert reply.startswith('Corrected "laptp" to "laptop".')
    assert 'I found 2 items matching "laptop" in the entire marketplace:' in reply
    assert "MacBook Air laptop" in reply
    assert "Dell laptop charger" in reply


async def test_search_scoped_to_my_university(orchestrator):
    """Test "at my university" narrows results to the user's campus."""
    reply = await orchestrator.process_message("textbooks at my university", context_for(orchestrator))

    assert "at Stanford University:" in reply
    assert "Calculus textbook" in reply
    assert "Price: Free" in reply


async def test_broad_interest_browses_recent(orchestrator):
    """Test browsing wording without an intent lists recent items."""
    reply = await orchestrator.process_message("what's new", context_for(orchestrator))

    assert reply.startswith("I found 5 items in the entire marketplace:")


async def test_fixed_answer_skips_generator(orchestrator, generator):
    """Test identity questions are answered from configuration."""
    reply = await orchestrator.process_message("Who is the founder?", context_for(orchestrator))

    assert reply == "Campus Marketplace was founded by Mark Daniel."
    assert generator.prompts == []


async def test_sensitive_question_refused_before_generation(orchestrator, generator):
    """Test sensitive user questions never reach the generator."""
    reply = await orchestrator.process_message("what is my password?", context_for(orchestrator))

    assert reply == SAFE_REFUSAL
    assert generator.prompts == []


async def test_sensitive_generated_text_refused(settings, store, generator_factory):
    """Test generated text mentioning sensitive data is replaced."""
    generator = generator_factory("Sure, just send me your credit card number.")
    orchestrator = ConversationOrchestrator(settings, store, generator)

    reply = await orchestrator.process_message("Can you explain how refunds work", context_for(orchestrator))

    assert reply == SAFE_REFUSAL
    assert len(generator.prompts) == 1


async def test_generation_error_apologizes(settings, store, generator_factory, generation_error):
    """Test generator failures become the apology."""
    orchestrator = ConversationOrchestrator(settings, store, generator_factory(error=generation_error))

    reply = await orchestrator.process_message("Can you explain how refunds work", context_for(orchestrator))

    assert reply == APOLOGY


async def test_missing_generator_apologizes(settings, store):
    """Test no configured generator yields the apology."""
    orchestrator = ConversationOrchestrator(settings, store, None)

    reply = await orchestrator.process_message("Can you explain how refunds work", context_for(orchestrator))

    assert reply == APOLOGY


async def test_generation_timeout_apologizes(settings, store):
    """Test a slow generator is abandoned after the timeout."""
    fast = dataclasses.replace(settings, generation_timeout=0.05)
    orchestrator = ConversationOrchestrator(fast, store, SlowGenerator())

    reply = await orchestrator.process_message("Can you explain how refunds work", context_for(orchestrator))

    assert reply == APOLOGY


async def test_generated_reply_is_returned(orchestrator):
    """Test a clean generated reply passes through."""
    reply = await orchestrator.process_message("Can you explain how refunds work", context_for(orchestrator))

    assert reply == "Happy to help with the marketplace!"


async def test_prompt_contents(orchestrator, generator):
    """Test the prompt carries history, listings, statistics, and the query."""
    message = "Can you explain how refunds work"
    manager = orchestrator.context_manager
    context = context_for(orchestrator)
    context = manager.add_message(context, "user", "hi")
    context = manager.add_message(context, "assistant", "Hello! How can I help?")
    context = manager.add_message(context, "user", message)

    await orchestrator.process_message(message, context)

    prompt = generator.prompts[0]
    assert "Campus Marketplace" in prompt
    assert "User: hi" in prompt
    assert "Assistant: Hello! How can I help?" in prompt
    assert f"User: {message}" not in prompt
    assert f"CURRENT USER QUERY: {message}" in prompt
    assert '"title": "MacBook Air laptop"' in prompt
    assert "- Total listings: 5" in prompt
    assert "- University: Stanford University" in prompt


async def test_unexpected_error_apologizes(settings, store):
    """Test an internal failure is reported as the apology."""
    orchestrator = ConversationOrchestrator(settings, store, None, extractor=ExplodingExtractor())

    reply = await orchestrator.process_message("laptop", context_for(orchestrator))

    assert reply == APOLOGY


def test_routes_in_precedence_order(orchestrator):
    """Test the rule order."""
    assert orchestrator.routes == ("fixed_answer", "my_listings", "search", "generative")


async def test_respond_persists_both_messages(orchestrator, store, user):
    """Test the user message and reply are logged in order."""
    reply = await orchestrator.respond(user, "laptop")

    assert reply.route == "search"
    assert reply.session_id is not None
    assert reply.user.name == "Ana Student"
    messages = await store.get_messages(reply.session_id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "laptop"
    assert messages[1].content == reply.text
    assert messages[1].metadata == {"route": "search"}


async def test_respond_reuses_session_and_history(orchestrator, generator, user):
    """Test the second turn sees the first turn in its prompt."""
    first = await orchestrator.respond(user, "laptop")
    second = await orchestrator.respond(user, "Can you explain how refunds work")

    assert second.session_id == first.session_id
    assert "User: laptop" in generator.prompts[0]


async def test_respond_without_store(settings, failing_store, generator, user):
    """Test store failures still produce a reply."""
    orchestrator = ConversationOrchestrator(settings, failing_store, generator)

    reply = await orchestrator.respond(user, "hello there")

    assert reply.session_id is None
    assert reply.text == "Happy to help with the marketplace!"
    assert reply.user.id == "user-1"


async def test_cancelled_turn_stores_no_reply(settings, store, user):
    """Test cancellation during generation leaves only the user message."""
    started = threading.Event()
    release = threading.Event()

    class BlockingGenerator:
        def generate_text(self, prompt):
            started.set()
            release.wait(2)
            return "never stored"

    orchestrator = ConversationOrchestrator(settings, store, BlockingGenerator())
    task = asyncio.create_task(orchestrator.respond(user, "Can you explain how refunds work"))
    for _ in range(200):
        if started.is_set():
            break
        await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()

    session = await store.get_or_create_session(user.id)
    messages = await store.get_messages(session.id)
    assert [m.role for m in messages] == ["user"]
