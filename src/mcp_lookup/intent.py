"""
Natural-language intent to capability tags.

Rule-based: a static phrase lexicon maps phrases to capability tags
(plus related alias tags). When no phrase matches, the intent falls back
to plain keyword tokens, which discovery matches against each server's
keyword list.
"""

import re
from dataclasses import dataclass, field

# ========================================
# LEXICON
# ========================================

# capability tag -> phrases that express it
INTENT_PHRASES: dict[str, tuple[str, ...]] = {
    "email_send": (
        "send email", "send mail", "compose email", "write email",
        "email someone", "send message", "mail to", "compose mail",
    ),
    "email_read": (
        "read email", "check email", "read mail", "check mail",
        "inbox", "read messages", "check messages", "view emails",
    ),
    "calendar_create": (
        "create event", "schedule meeting", "add calendar", "book appointment",
        "create appointment", "schedule event", "add meeting", "calendar entry",
        "manage calendar",
    ),
    "calendar_read": (
        "check calendar", "view calendar", "see schedule", "check schedule",
        "calendar events", "upcoming meetings", "my schedule",
    ),
    "file_read": (
        "read file", "open file", "view file", "get file",
        "download file", "access file", "file content",
    ),
    "file_write": (
        "write file", "save file", "create file", "upload file",
        "store file", "edit file", "modify file",
    ),
    "db_query": (
        "query database", "search database", "find data", "get data",
        "database search", "sql query", "data lookup",
    ),
    "db_write": (
        "insert data", "update database", "save data", "store data",
        "database insert", "database update", "write database",
    ),
    "rest_api": (
        "api call", "http request", "rest call", "web request",
        "api request", "call api", "fetch data",
    ),
    "repo_create": (
        "create repository", "new repo", "create repo", "github repo",
        "git repository", "new project", "create project",
    ),
    "issue_create": (
        "create issue", "new issue", "report bug", "github issue",
        "create ticket", "bug report", "feature request",
    ),
    "payment_processing": (
        "process payment", "charge card", "accept payment", "billing",
        "stripe payment", "paypal payment", "checkout",
    ),
    "analytics": (
        "track event", "analytics", "metrics", "tracking",
        "page view", "user tracking",
    ),
    "social_media": (
        "post tweet", "social media", "twitter post", "linkedin post",
        "facebook post", "social post", "share content",
    ),
    "llm": (
        "ai completion", "generate text", "ai chat", "language model",
        "ai response",
    ),
}

# capability tag -> related tags added whenever it matches
CAPABILITY_ALIASES: dict[str, tuple[str, ...]] = {
    "email_send": ("email", "email_compose", "messaging"),
    "email_read": ("email", "email_search", "inbox_read"),
    "calendar_create": ("calendar", "scheduling", "event_create"),
    "calendar_read": ("calendar", "schedule_read", "event_read"),
    "file_read": ("files", "file_download", "file_access"),
    "file_write": ("files", "file_upload", "file_save"),
    "db_query": ("database", "data_read", "sql_select"),
    "db_write": ("database", "data_write", "sql_insert"),
    "rest_api": ("http_request", "web_api"),
    "repo_create": ("git", "git_init", "project_create"),
    "issue_create": ("ticket_create", "bug_report"),
    "payment_processing": ("payments", "billing", "checkout"),
    "analytics": ("tracking", "metrics"),
    "social_media": ("social_post", "content_share"),
    "llm": ("ai_completion", "text_generation"),
}

STOPWORDS = frozenset(
    """
    a an and are as at be by can do for from find get give help i in is it
    its me my need of on or please some something that the this to use want
    we which who will with would you your server servers service services
    tool tools mcp
    """.split()
)


@dataclass
class IntentResolution:
    """Capability tags resolved from free text."""

    intent: str
    tags: list[str] = field(default_factory=list)
    matched_phrases: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)

    @property
    def from_lexicon(self) -> bool:
        return bool(self.matched_phrases)


def normalize_intent(intent: str) -> str:
    text = re.sub(r"[^\w\s]", " ", intent.lower())
    return re.sub(r"\s+", " ", text).strip()


def tokenize(intent: str) -> list[str]:
    """Keyword tokens of an intent, stopwords removed, order kept."""
    tokens: list[str] = []
    for word in normalize_intent(intent).split(" "):
        if len(word) < 2 or word in STOPWORDS or word in tokens:
            continue
        tokens.append(word)
    return tokens


def resolve_intent(intent: str) -> IntentResolution:
    """
    Resolve an intent to capability tags.

    Examples:
        "send emails to my team" -> email_send, email, email_compose, messaging
        "weather forecast"       -> no lexicon hit, keywords ["weather", "forecast"]
    """
    normalized = normalize_intent(intent)
    resolution = IntentResolution(intent=intent)

    for tag, phrases in INTENT_PHRASES.items():
        hits = [p for p in phrases if p in normalized]
        if not hits:
            continue
        resolution.matched_phrases.extend(hits)
        for resolved in (tag, *CAPABILITY_ALIASES.get(tag, ())):
            if resolved not in resolution.tags:
                resolution.tags.append(resolved)

    if not resolution.tags:
        resolution.keywords = tokenize(intent)

    return resolution


def similar_intents(intent: str, limit: int = 3) -> list[str]:
    """Lexicon phrases sharing words with the intent, best overlap first."""
    words = set(tokenize(intent))
    if not words:
        return []

    scored: list[tuple[float, str]] = []
    for phrases in INTENT_PHRASES.values():
        for phrase in phrases:
            phrase_words = set(phrase.split(" "))
            overlap = len(words & phrase_words)
            if overlap:
                scored.append((overlap / len(words | phrase_words), phrase))

    scored.sort(key=lambda item: (-item[0], item[1]))
    suggestions: list[str] = []
    for _, phrase in scored:
        if phrase not in suggestions:
            suggestions.append(phrase)
        if len(suggestions) == limit:
            break
    return suggestions
