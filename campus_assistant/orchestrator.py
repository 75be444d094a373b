"""Message routing for the marketplace assistant.

process_message runs four handlers in precedence order (see RuleEngine):

    fixed_answer   platform identity questions answered from configuration
    my_listings    "my posts" style requests, answered from the seller lookup
    search         recognized search intents or broad shopping wording
    generative     everything else, answered by the text generator

respond() wraps process_message with the session lifecycle: it persists the
user message before routing and the reply after, both on a best-effort basis.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .config import Settings
from .context_manager import ChatTurn, ContextManager, ConversationContext, MarketplaceContext, UserContext
from .errors import GenerativeTextError
from .formatter import format_my_listings, format_price, format_result_set, scope_label
from .gemini_client import TextGenerator
from .intent import IntentExtractor, SearchIntent
from .models import AuthenticatedUser
from .prompt_loader import load_prompt, render_prompt
from .retrieval import EnhancedListing, RetrievalGateway, effective_campus, enrich_listing
from .rules import HandlerRule, RuleEngine
from .sanitizer import SAFE_REFUSAL, contains_sensitive_content, sanitize_response
from .store import ListingFilter, MarketplaceStore
from .utils import find_first_phrase, normalize_text

logger = logging.getLogger("campus_assistant.orchestrator")

APOLOGY = (
    "I'm having trouble processing your request. "
    "Please try again or contact support if the issue persists."
)

MY_LISTINGS_PHRASES: Tuple[str, ...] = (
    "my posts",
    "my post",
    "my listings",
    "my listing",
    "my items",
    "my ads",
    "what am i selling",
    "what i'm selling",
    "things i'm selling",
    "i posted",
)

# Weak signal that the user wants to browse even when no intent was recognized.
BROAD_INTEREST_KEYWORDS: Tuple[str, ...] = (
    "buy",
    "buying",
    "purchase",
    "shop",
    "shopping",
    "browse",
    "deals",
    "cheap",
    "available",
    "for sale",
    "what's new",
    "whats new",
    "new listings",
    "recent listings",
)

HISTORY_TURNS = 6
PROMPT_LISTINGS = 10
PROMPT_FILE = "general_assistant.md"
TRAILING_PUNCTUATION = " ?!.,;:"


@dataclass(frozen=True)
class Turn:
    """Everything a handler may look at for one message."""
    message: str
    normalized: str
    context: ConversationContext
    intent: Optional[SearchIntent]

    @property
    def user(self) -> Optional[UserContext]:
        return self.context.user

    @property
    def university(self) -> Optional[str]:
        return self.context.user.university if self.context.user else None


@dataclass(frozen=True)
class AssistantReply:
    text: str
    route: str
    session_id: Optional[str]
    user: UserContext


def build_fixed_answers(platform_name: str, founder: str) -> Tuple[Tuple[re.Pattern, str], ...]:
    """Purpose: Compile the platform-identity questions and their answers.
    Inputs/Outputs: Platform and founder names; output is (pattern, answer) pairs.
    Side Effects / State: None.
    Dependencies: re; patterns are matched with fullmatch on normalized text.
    Failure Modes: None.
    If Removed: Identity questions reach the generator, which may invent facts.
    Testing Notes: "Who is the founder?" and "WHO IS THE FOUNDER" both match.
    """
    # Names are escaped; matching is case-insensitive on trimmed, normalized text.
    name = re.escape(normalize_text(platform_name))
    this = rf"(?:this|this (?:platform|site|website|app|marketplace)|{name})"
    about = (
        f"{platform_name} is a campus marketplace where students buy, sell, and trade "
        "with people at their university and nearby campuses. You can post items for "
        "sale, housing, services, jobs, and community events, and browse listings from "
        "every supported campus."
    )
    founder_answer = f"{platform_name} was founded by {founder}."
    identity = (
        f"I'm the {platform_name} assistant. I can search listings by keyword, category, "
        "or campus (try \"show me textbooks at UCLA\"), show your own posts, and answer "
        "questions about using the marketplace."
    )
    how_to_post = (
        "To create a post, choose \"Create Post\", pick a category and subcategory, add a "
        "title, description, price, campus, and photos, then publish. Your listing shows "
        "up in search right away."
    )
    table = (
        (rf"what is {this}", about),
        (rf"what does {this} do", about),
        (rf"tell me about {this}", about),
        (rf"who (?:is|was) the (?:founder|creator)(?: of {this})?", founder_answer),
        (rf"who (?:founded|created|made|built|started) {this}", founder_answer),
        (r"who are you|what are you|what can you do", identity),
        (r"how (?:do|can) i (?:create|make|add) an? (?:post|listing)|how (?:do|can) i sell(?: something| an item)?", how_to_post),
    )
    return tuple((re.compile(pattern, re.IGNORECASE), answer) for pattern, answer in table)


class ConversationOrchestrator:
    """Routes one chat message to a reply and keeps the session log current."""

    def __init__(
        self,
        settings: Settings,
        store: MarketplaceStore,
        generator: Optional[TextGenerator],
        context_manager: Optional[ContextManager] = None,
        extractor: Optional[IntentExtractor] = None,
        retrieval: Optional[RetrievalGateway] = None,
    ) -> None:
        """Purpose: Wire collaborators and the routing rules.
        Inputs/Outputs: Settings, the store, and the text generator (None when
            no API key is configured); optional overrides for tests.
        Side Effects / State: Builds the rule table and fixed answers.
        Dependencies: ContextManager, IntentExtractor, RetrievalGateway, RuleEngine.
        Failure Modes: None at construction; the prompt file loads on first use.
        If Removed: The HTTP layer has nothing to call.
        Testing Notes: Pass a stub generator that records prompts.
        """
        # Rule order is the routing precedence.
        self._settings = settings
        self._store = store
        self._generator = generator
        self._retrieval = retrieval or RetrievalGateway(
            store, limit=settings.search_limit, timeout=settings.store_timeout
        )
        self._context = context_manager or ContextManager(
            store,
            window_size=settings.context_window,
            history_limit=settings.history_limit,
            store_timeout=settings.store_timeout,
            retrieval=self._retrieval,
        )
        self._extractor = extractor or IntentExtractor()
        self._fixed_answers = build_fixed_answers(settings.platform_name, settings.platform_founder)
        self._prompt_template: Optional[str] = None
        self._engine: RuleEngine[Turn] = RuleEngine(
            [
                HandlerRule("fixed_answer", self._is_fixed_question, self._answer_fixed),
                HandlerRule("my_listings", self._wants_my_listings, self._answer_my_listings),
                HandlerRule("search", self._wants_search, self._answer_search),
                HandlerRule("generative", lambda turn: True, self._answer_generative),
            ]
        )

    @property
    def context_manager(self) -> ContextManager:
        return self._context

    @property
    def routes(self) -> Tuple[str, ...]:
        return self._engine.names

    async def process_message(self, message: str, context: ConversationContext) -> str:
        _, reply = await self._route(message, context)
        return reply

    async def _route(self, message: str, context: ConversationContext) -> Tuple[str, str]:
        """Purpose: Turn one message plus context into (route name, reply text).
        Inputs/Outputs: Raw message and ConversationContext; output is a tuple.
        Side Effects / State: Store reads and at most one generator call.
        Dependencies: IntentExtractor and RuleEngine.
        Failure Modes: Unexpected errors are logged and become the apology text;
            cancellation propagates.
        If Removed: No message is ever answered.
        Testing Notes: A handler raising RuntimeError must yield APOLOGY.
        """
        # Intent is extracted once and shared by the predicates and handlers.
        try:
            university = context.user.university if context.user else None
            turn = Turn(
                message=message,
                normalized=normalize_text(message),
                context=context,
                intent=self._extractor.extract(message, university),
            )
            route, reply = await self._engine.dispatch(turn)
        except Exception:
            logger.exception("message processing failed")
            return "error", APOLOGY
        logger.info("message routed route=%s session=%s", route, context.session_id)
        return route, reply

    async def respond(
        self,
        user: AuthenticatedUser,
        message: str,
        user_context: Optional[UserContext] = None,
    ) -> AssistantReply:
        """Purpose: Handle one chat turn end to end for an authenticated user.
        Inputs/Outputs: Identity, message, and an optional prebuilt UserContext;
            output is an AssistantReply with text, route, and session id.
        Side Effects / State: May create a session; appends the user message,
            then the assistant reply, to the persisted log.
        Dependencies: ContextManager and _route.
        Failure Modes: Persistence failures are logged and ignored. If the turn
            is cancelled before a reply exists, no assistant message is stored.
        If Removed: The HTTP chat endpoint cannot serve requests.
        Testing Notes: After one call the log holds [user, assistant] in order.
        """
        # Session, window, and profile first; the user message is stored before routing.
        session = await self._context.get_or_create_session(user.id)
        session_id = session.id if session else None
        if user_context is None:
            user_context = await self._context.build_user_context(user)
        context = self._context.create_initial_context(user=user_context, session_id=session_id)
        if session_id:
            context = replace(context, messages=await self._context.load_window(session_id))
            await self._context.record_message(session_id, "user", message, user.id)
        context = self._context.add_message(context, "user", message)

        route, reply = await self._route(message, context)

        if session_id:
            await self._context.record_message(session_id, "assistant", reply, user.id, {"route": route})
        return AssistantReply(text=reply, route=route, session_id=session_id, user=user_context)

    # fixed answers

    def _fixed_answer_for(self, normalized: str) -> Optional[str]:
        question = normalized.strip(TRAILING_PUNCTUATION)
        for pattern, answer in self._fixed_answers:
            if pattern.fullmatch(question):
                return answer
        return None

    def _is_fixed_question(self, turn: Turn) -> bool:
        return self._fixed_answer_for(turn.normalized) is not None

    async def _answer_fixed(self, turn: Turn) -> str:
        return self._fixed_answer_for(turn.normalized) or APOLOGY

    # my listings

    def _wants_my_listings(self, turn: Turn) -> bool:
        if turn.user is None or not turn.user.id:
            return False
        return find_first_phrase(turn.normalized, MY_LISTINGS_PHRASES) is not None

    async def _answer_my_listings(self, turn: Turn) -> str:
        """Seller lookup only, optionally narrowed to a campus named in the message."""
        scope = self._extractor.detect_campus_scope(turn.message, turn.university)
        campus = scope.campus if not scope.search_all_campuses else None
        try:
            rows = await asyncio.wait_for(
                self._store.get_listings_by_seller(turn.user.id), self._settings.store_timeout
            )
        except Exception as exc:
            logger.error("seller lookup failed user=%s error=%s", turn.user.id, exc)
            rows = []
        if campus:
            rows = [row for row in rows if row.campus == campus]
        listings = [enrich_listing(row, self._store.public_photo_url) for row in rows]
        return format_my_listings(listings, campus)

    # search

    def _wants_search(self, turn: Turn) -> bool:
        if turn.intent is not None:
            return True
        return find_first_phrase(turn.normalized, BROAD_INTEREST_KEYWORDS) is not None

    async def _answer_search(self, turn: Turn) -> str:
        """Purpose: Answer a search intent (or broad browsing) with formatted results.
        Inputs/Outputs: The Turn; output is the formatted reply.
        Side Effects / State: One store read through RetrievalGateway.
        Dependencies: RetrievalGateway.search and formatter.format_result_set.
        Failure Modes: Retrieval failures show the no-results template.
        If Removed: Search messages fall through to the generator.
        Testing Notes: "laptp" replies start with the correction note.
        """
        # Broad wording without an intent browses newest listings in scope.
        intent = turn.intent
        if intent is None:
            scope = self._extractor.detect_campus_scope(turn.message, turn.university)
            intent = SearchIntent(query="", campus=scope.campus, search_all_campuses=scope.search_all_campuses)
        listing_filter = ListingFilter(
            main_category=intent.category,
            sub_category=intent.subcategory,
            campus=intent.campus,
        )
        listings = await self._retrieval.search(
            intent.query, turn.university, listing_filter, intent.search_all_campuses
        )
        campus = effective_campus(intent.campus, turn.university, intent.search_all_campuses)
        reply = format_result_set(listings, scope_label(campus), query=intent.query or None)
        if intent.correction_note:
            return f"{intent.correction_note}\n\n{reply}"
        return reply

    # generative fallback

    async def _answer_generative(self, turn: Turn) -> str:
        """Purpose: Answer open questions with the text generator.
        Inputs/Outputs: The Turn; output is sanitized generated text, the fixed
            refusal, or the apology.
        Side Effects / State: Store reads for marketplace statistics and one
            generator call bounded by generation_timeout. Never retried.
        Dependencies: TextGenerator, prompt template, sanitize_response.
        Failure Modes: GenerativeTextError, timeouts, and a missing generator
            become APOLOGY. Sensitive user messages are refused before any call.
        If Removed: Non-search questions get no answer.
        Testing Notes: A message containing "password" never reaches the generator.
        """
        # Refuse before prompting when the question itself is sensitive.
        if contains_sensitive_content(turn.message):
            logger.warning("sensitive request refused session=%s", turn.context.session_id)
            return SAFE_REFUSAL
        if self._generator is None:
            logger.error("no text generator configured")
            return APOLOGY
        marketplace = turn.context.marketplace
        if marketplace is None:
            marketplace = await self._context.build_marketplace_context(turn.university)
        prompt = self.build_prompt(turn.message, turn.context, marketplace)
        logger.debug("generation prompt chars=%s", len(prompt))
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._generator.generate_text, prompt),
                self._settings.generation_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("generation timed out after=%ss", self._settings.generation_timeout)
            return APOLOGY
        except GenerativeTextError as exc:
            logger.error("generation failed error=%s", exc)
            return APOLOGY
        return sanitize_response(raw)

    def _template(self) -> str:
        if self._prompt_template is None:
            self._prompt_template = load_prompt(self._settings.prompts_dir / PROMPT_FILE)
        return self._prompt_template

    def build_prompt(
        self,
        message: str,
        context: ConversationContext,
        marketplace: MarketplaceContext,
    ) -> str:
        """Fill the prompt template with profile, statistics, listings, and history."""
        listings = list(marketplace.recent_listings)
        if len(listings) < PROMPT_LISTINGS:
            seen = {listing.id for listing in listings}
            listings += [item for item in marketplace.university_listings if item.id not in seen]
        return render_prompt(
            self._template(),
            platform_name=self._settings.platform_name,
            platform_founder=self._settings.platform_founder,
            user_profile=_profile_summary(context.user),
            marketplace_status=_marketplace_summary(marketplace),
            recent_listings=_listings_json(listings[:PROMPT_LISTINGS]),
            history=_history_text(context.messages, message),
            message=message,
        )


def _profile_summary(user: Optional[UserContext]) -> str:
    if user is None:
        return "- Not signed in"
    member_since = user.member_since.date().isoformat() if user.member_since else "Unknown"
    return "\n".join(
        [
            f"- Name: {user.name or 'Not provided'}",
            f"- University: {user.university or 'Not specified'}",
            f"- Member since: {member_since}",
            f"- Posts created: {user.posts_count}",
            f"- Listings at their university: {user.university_posts_count}",
        ]
    )


def _marketplace_summary(marketplace: MarketplaceContext) -> str:
    return "\n".join(
        [
            f"- Total listings: {marketplace.total_listings}",
            f"- Popular categories: {', '.join(marketplace.popular_categories) or 'None yet'}",
            f"- Available categories: {', '.join(marketplace.categories)}",
            f"- Supported campuses: {', '.join(marketplace.campuses)}",
        ]
    )


def _listings_json(listings: Sequence[EnhancedListing]) -> str:
    rows: List[dict] = [
        {
            "title": listing.title,
            "price": format_price(listing.price),
            "category": listing.category,
            "subcategory": listing.subcategory,
            "campus": listing.campus,
            "posted": listing.formatted_date,
            "url": listing.post_url,
        }
        for listing in listings
    ]
    return json.dumps(rows, ensure_ascii=False, indent=2)


def _history_text(messages: Sequence[ChatTurn], current: str) -> str:
    # The current message is sent separately, so drop it if it closes the window.
    turns = list(messages)
    if turns and turns[-1].role == "user" and turns[-1].content == current:
        turns = turns[:-1]
    lines = [
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
        for turn in turns[-HISTORY_TURNS:]
    ]
    return "\n".join(lines) or "(no earlier messages)"
