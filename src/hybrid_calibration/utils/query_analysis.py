# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Query Analysis

Extracts lexical signals from a raw query string: acronyms, code-like tokens,
technical keywords and question phrasing. These signals feed the alpha
auto-tune step; nothing here touches alpha or performs I/O.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..config import DEFAULT_BOOST_KEYWORDS
from ..models.calibration import LexicalSignals

BOOST_KEYWORDS: frozenset[str] = frozenset(DEFAULT_BOOST_KEYWORDS)

QUESTION_WORDS: tuple[str, ...] = ("what", "why", "how", "when", "where", "who", "which")

_ACRONYM_PATTERN = re.compile(r"\b[A-Z]{2,}\b")

CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.[a-z]{2,4}\b", re.IGNORECASE),  # file extensions
    re.compile(r"\w+\(\)"),  # function calls
    re.compile(r"\w+\.\w+"),  # object.property
    re.compile(r"[a-z]+_[a-z]+", re.IGNORECASE),  # snake_case
    re.compile(r"[a-z]+[A-Z][a-z]+"),  # camelCase
)


def find_acronyms(query: str) -> list[str]:
    """Return whole-word runs of two or more uppercase letters, in order."""
    return _ACRONYM_PATTERN.findall(query)


def has_code_patterns(query: str) -> bool:
    """True if the query looks like it references code, files or identifiers."""
    return any(pattern.search(query) for pattern in CODE_PATTERNS)


def is_question(query: str) -> bool:
    """True if the query opens with an interrogative word (prefix match, so "however" counts)."""
    return query.strip().lower().startswith(QUESTION_WORDS)


def find_boost_keywords(query: str, boost_keywords: Iterable[str] = BOOST_KEYWORDS) -> list[str]:
    """
    Find technical keywords that signal exact-match intent.

    Tokens are whitespace-delimited and compared lowercased, so "JWT" matches
    "jwt" but "jwt-based" does not.
    """
    keywords = boost_keywords if isinstance(boost_keywords, (set, frozenset)) else frozenset(boost_keywords)
    return [word for word in query.lower().split() if word in keywords]


def analyze_query(query: str, boost_keywords: Iterable[str] = BOOST_KEYWORDS) -> LexicalSignals:
    """
    Extract all lexical signals from a query.

    Args:
        query: Raw user query
        boost_keywords: Technical terms to look for

    Returns:
        LexicalSignals describing the query
    """
    return LexicalSignals(
        has_boost_keywords=bool(find_boost_keywords(query, boost_keywords)),
        acronym_count=len(find_acronyms(query)),
        has_code_patterns=has_code_patterns(query),
        is_question=is_question(query),
    )
