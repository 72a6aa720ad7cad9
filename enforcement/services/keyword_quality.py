"""
Keyword Quality

Filters generic, industry-standard terms out of keyword lists so that
evidence and search queries are anchored to brand- and product-specific
vocabulary.

Example for "10x Bars Indicator by Simpler Trading":
- Specific: "10x Bars", "Simpler Trading", "10x Bars Indicator"
- Generic: "trading", "indicator", "chart", "review"
"""

import re

GENERIC_STOPWORDS = frozenset({
    # Trading / Finance
    "trading", "trader", "traders", "trade", "trades",
    "indicator", "indicators", "strategy", "strategies",
    "chart", "charts", "charting", "analysis", "analytics",
    "market", "markets", "stock", "stocks", "forex", "crypto",
    "bitcoin", "currency", "currencies", "investment", "investing",
    "portfolio", "profit", "profits", "loss", "losses",
    "signal", "signals", "alert", "alerts", "scanner",
    "broker", "brokers", "exchange", "exchanges",
    "bullish", "bearish", "buy", "sell", "long", "short",
    "candlestick", "candle", "candles", "volume", "price",
    "resistance", "support", "breakout", "momentum", "trend",
    "swing", "scalp", "scalping", "daytrading", "options",
    "futures", "commodities", "bonds", "etf", "etfs",
    "rsi", "macd", "ema", "sma", "fibonacci", "bollinger",
    "stochastic", "atr", "vwap", "moving average",

    # Software / Tech
    "software", "tool", "tools", "platform", "app", "application",
    "download", "install", "setup", "plugin", "extension",
    "dashboard", "settings", "features", "feature", "update",
    "version", "beta", "pro", "premium", "free", "trial",
    "api", "data", "code", "script", "automation",
    "algorithm", "system", "systems", "module", "template",

    # Digital Products / Courses
    "course", "courses", "class", "classes", "lesson", "lessons",
    "tutorial", "tutorials", "training", "webinar", "workshop",
    "ebook", "book", "guide", "pdf", "video", "videos",
    "modules", "chapter", "chapters", "content",
    "membership", "subscription", "access", "lifetime",
    "beginner", "beginners", "advanced", "intermediate",
    "masterclass", "bootcamp", "program", "programs",

    # Marketing / Sales
    "review", "reviews", "testimonial", "testimonials",
    "discount", "coupon", "deal", "offer", "sale", "pricing",
    "bonus", "bonuses", "guarantee", "refund", "money back",
    "limited", "exclusive", "special", "official", "legit",
    "scam", "worth", "best", "top", "results", "success",

    # Content / Publishing
    "article", "articles", "blog", "post", "posts", "page", "pages",
    "resource", "resources", "library", "archive", "archives",
    "news", "report", "reports", "research", "whitepaper",
    "infographic", "podcast", "episode", "episodes", "series",
    "newsletter", "publication", "media", "press", "release",
    "faq", "documentation", "docs", "manual", "reference",
    "link", "links", "site", "website", "homepage", "landing",

    # General / Common
    "online", "digital", "learn", "learning", "education",
    "performance", "professional", "expert", "experts",
    "community", "group", "member", "members", "join",
    "live", "real-time", "realtime", "automated",
    "custom", "simple", "easy", "powerful", "complete",
    "ultimate", "comprehensive", "new", "latest",
    "method", "methods", "technique", "techniques", "approach",
    "configuration", "config", "option",
    "service", "services", "product", "products", "item", "items",
    "account", "profile", "user", "users", "admin", "login",
    "password", "email", "contact", "help", "about",
    "home", "search", "browse", "category", "categories", "tag", "tags",

    # Platform names (generic, not product-specific)
    "tradingview", "metatrader", "mt4", "mt5", "thinkorswim",
    "ninjatrader", "tradestation", "webull", "robinhood",
})

_NUMERIC = re.compile(r"^\d+$")


def _is_generic_word(word: str) -> bool:
    return word in GENERIC_STOPWORDS or len(word) <= 2


def is_generic_keyword(keyword: str) -> bool:
    """Return True if a keyword is too generic for infringement matching.

    A keyword is generic when it is two characters or shorter, a pure
    number, a stopword, or a phrase made only of stopwords and short words.
    """
    normalized = keyword.lower().strip()

    if len(normalized) <= 2:
        return True
    if _NUMERIC.match(normalized):
        return True
    if normalized in GENERIC_STOPWORDS:
        return True

    # Multi-word: generic if every word is ("trading indicator")
    words = normalized.split()
    return len(words) > 1 and all(_is_generic_word(word) for word in words)


def filter_generic_keywords(keywords: list[str]) -> list[str]:
    """Keep only product-specific keywords."""
    return [keyword for keyword in keywords if not is_generic_keyword(keyword)]


def keyword_specificity_score(keyword: str) -> float:
    """Score a keyword's specificity from 0 (generic) to 1 (highly specific)."""
    normalized = keyword.lower().strip()
    words = normalized.split()

    if len(words) == 1 and normalized in GENERIC_STOPWORDS:
        return 0.0
    if len(words) > 1 and all(_is_generic_word(word) for word in words):
        return 0.1
    # Single non-stopword (possibly a brand)
    if len(words) == 1:
        return 0.5

    specific_count = sum(1 for word in words if not _is_generic_word(word))
    specificity = specific_count / len(words)
    length_bonus = min(len(words) * 0.1, 0.3)
    return min(specificity + length_bonus, 1.0)


def is_evidence_worthy(keyword: str, product_name: str, brand_name: str | None = None) -> bool:
    """Check whether a keyword is specific enough to show as evidence.

    Stricter than search filtering: product and brand name matches always
    qualify, other terms need a specificity of at least 0.5.
    """
    normalized = keyword.lower().strip()

    if product_name and product_name.lower() in normalized:
        return True
    if brand_name and brand_name.lower() in normalized:
        return True
    if is_generic_keyword(keyword):
        return False
    return keyword_specificity_score(keyword) >= 0.5


def filter_piracy_search_terms(
    terms: list[str],
    product_name: str,
    brand_name: str | None = None,
    brand_identifiers: list[str] | None = None,
) -> list[str]:
    """Keep only search terms anchored to the product's identity.

    A term is anchored if it contains the product name, the brand name, a
    brand identifier, or any non-generic word of the product name.
    """
    anchors = [product_name.lower()]
    if brand_name:
        anchors.append(brand_name.lower())
    anchors.extend(identifier.lower() for identifier in brand_identifiers or [] if identifier)
    anchor_words = [word for word in product_name.lower().split() if not _is_generic_word(word)]

    anchored = []
    for term in terms:
        normalized = term.lower().strip()
        if not normalized:
            continue
        if any(anchor in normalized for anchor in anchors) or any(
            word in normalized.split() for word in anchor_words
        ):
            anchored.append(term.strip())
    return anchored
