"""Fixed vocabularies, canned replies and protocol constants."""

from __future__ import annotations

SESSION_HEADER_NAME = "X-Session-ID"

# Non-standard status used for client-initiated aborts.
HTTP_CLIENT_CLOSED_REQUEST = 499

MAX_QUERY_CHARS = 2000
MAX_SANITIZED_CHARS = 1000
MAX_PAGE_RANGE_SPAN = 50
MAX_KEYWORDS = 12
MAX_DOCUMENTS_PER_REQUEST = 100
MAX_FOLDERS_PER_REQUEST = 25

TIKTOKEN_ENCODING = "cl100k_base"

STOPWORDS = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "am", "an", "and", "any",
        "are", "as", "at", "be", "because", "been", "before", "being", "below",
        "between", "both", "but", "by", "can", "could", "did", "do", "does",
        "doing", "down", "during", "each", "few", "for", "from", "further", "had",
        "has", "have", "having", "he", "her", "here", "hers", "him", "his", "how",
        "i", "if", "in", "into", "is", "it", "its", "itself", "just", "me", "more",
        "most", "my", "no", "nor", "not", "now", "of", "off", "on", "once", "only",
        "or", "other", "our", "ours", "out", "over", "own", "same", "she", "should",
        "so", "some", "such", "than", "that", "the", "their", "theirs", "them",
        "then", "there", "these", "they", "this", "those", "through", "to", "too",
        "under", "until", "up", "very", "was", "we", "were", "what", "when",
        "where", "which", "while", "who", "whom", "why", "will", "with", "would",
        "you", "your", "yours", "page", "pages", "pg", "pp",
    }
)

# Tokens that carry no informational content on their own.
CHITCHAT_TOKENS = frozenset(
    {
        "hi", "hello", "hey", "hiya", "yo", "sup", "thanks", "thank", "thx", "ty",
        "cheers", "ok", "okay", "k", "kk", "cool", "great", "nice", "awesome",
        "lol", "haha", "hehe", "lmao", "bye", "goodbye", "cya", "later", "good",
        "morning", "afternoon", "evening", "night", "you", "yes", "no", "yeah",
        "yep", "nope", "sure", "alright", "fine", "perfect", "got", "it", "much",
        "so", "very", "how", "are", "doing", "whats", "up", "who", "what", "is",
        "your", "name", "a", "the", "again", "all", "bot", "there",
    }
)

GREETING_TOKENS = frozenset({"hi", "hello", "hey", "hiya", "yo", "sup", "morning", "afternoon", "evening"})
THANKS_TOKENS = frozenset({"thanks", "thank", "thx", "ty", "cheers"})
FAREWELL_TOKENS = frozenset({"bye", "goodbye", "cya", "later", "night"})

ABUSIVE_TOKENS = frozenset(
    {
        "idiot", "stupid", "dumb", "moron", "useless", "shut", "hate", "fuck",
        "fucking", "shit", "bitch", "bastard", "asshole", "crap", "damn", "retard",
    }
)

CANNED_RESPONSES = {
    "greeting": "Hello! I can answer questions about the documents in this data room. What would you like to know?",
    "thanks": "You're welcome! Let me know if you have any other questions about your documents.",
    "farewell": "Goodbye! Come back any time you have questions about these documents.",
    "identity": "I'm an assistant for this data room. Ask me anything about the documents you have access to.",
    "generic": "I'm here to help you with your documents! How can I assist you with questions about your uploaded files?",
    "abusive": "I'm here to help with questions about the documents in this data room. Let's keep the conversation respectful.",
}

FALLBACK_RESPONSE = "I'm sorry, but I could not find the answer to your question in the provided documents."
FALLBACK_ANALYSIS_TIMEOUT = (
    "I couldn't work out your question in time. Please try rephrasing it more simply or asking about one topic at a time."
)
FALLBACK_NO_DOCUMENTS = "No documents are available for you to query in this data room."
FALLBACK_UNABLE_TO_PROCESS = "I'm sorry, I was unable to process your question against the available documents."
FALLBACK_APOLOGY = "I'm sorry, something went wrong while answering your question. Please try again."
FALLBACK_TIMEOUT = "The request took too long to process. Please try a simpler query or try again later."

# Lexical expansion table for common data room vocabulary.
SYNONYMS = {
    "termination": ("cancellation", "expiry"),
    "terminate": ("cancel", "end"),
    "revenue": ("sales", "income"),
    "profit": ("earnings", "net income"),
    "liability": ("obligation", "indemnity"),
    "agreement": ("contract",),
    "contract": ("agreement",),
    "employee": ("staff", "personnel"),
    "salary": ("compensation", "pay"),
    "lease": ("tenancy", "rental"),
    "owner": ("shareholder", "holder"),
    "risk": ("exposure", "threat"),
    "fee": ("charge", "cost"),
    "deadline": ("due date",),
    "warranty": ("guarantee",),
    "confidential": ("non-disclosure", "nda"),
}

INTENT_KEYWORDS = (
    ("comparison", ("compare", "difference", "differences", " vs ", "versus", "contrast")),
    ("summarization", ("summarize", "summarise", "summary", "overview", "tl;dr", "key points")),
    ("verification", ("is it true", "verify", "confirm", "does it say", "check whether")),
    ("analysis", ("analyze", "analyse", "assess", "evaluate", "impact", "implications", "risks")),
    ("concept_explanation", ("explain", "what does", "meaning of", "define", "definition")),
    ("extraction", ("what is", "what are", "list", "how much", "how many", "when", "who", "which")),
)

ACCESS_NO_DOCUMENTS = "No documents are available in this dataroom."
ACCESS_NONE_INDEXED = "No documents are indexed for AI search. Please contact the dataroom owner."
ACCESS_UNAUTHORIZED = "You don't have permission to access {count} requested document(s)."
ACCESS_NO_MATCH = "No documents match your requested scope. Please check your document selection."
