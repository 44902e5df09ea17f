"""
Keyword-based topic, tone and conversation type inference, plus the
sentence and position markers stored with each turn.

All functions are pure and deterministic for a given vocabulary. Matching is
case-insensitive substring matching with no weighting or negation handling,
so "not good" counts as positive.
"""

import re
from typing import Any, Dict, Iterable, List, Sequence

from ..models.core import Role, Tone, Turn

TOPIC_VOCABULARY = (
    'theology', 'philosophy', 'apologetics', 'bible', 'scripture',
    'faith', 'religion', 'christianity', 'god', 'jesus', 'holy spirit',
    'salvation', 'grace', 'sin', 'redemption', 'prayer', 'worship',
    'church', 'community', 'discipleship', 'evangelism', 'mission',
    'creation', 'evolution', 'science', 'history', 'morality', 'ethics',
    'love', 'forgiveness', 'hope', 'peace', 'joy', 'patience',
    'kindness', 'goodness', 'faithfulness', 'gentleness', 'self-control',
)

POSITIVE_WORDS = (
    'love', 'joy', 'peace', 'hope', 'faith', 'grace', 'blessed',
    'wonderful', 'amazing', 'beautiful', 'good', 'great', 'excellent',
)

NEGATIVE_WORDS = (
    'hate', 'anger', 'fear', 'sadness', 'pain', 'suffering', 'evil',
    'terrible', 'awful', 'horrible', 'bad', 'wrong',
)

# First match wins
CONVERSATION_TYPES = (
    ('bible_study', ('bible', 'scripture')),
    ('apologetics', ('apologetics', 'defense')),
    ('spiritual', ('prayer', 'worship')),
    ('theological', ('philosophy', 'theology')),
    ('personal', ('personal', 'struggle')),
)

MAX_TOPICS = 5
DETAILED_MESSAGE_LENGTH = 100
# Sentences this short carry too little to stand for a whole turn
MIN_CHUNK_SENTENCE_LENGTH = 10

SENTENCE_BOUNDARY = re.compile(r'[.!?]+')


def _joined(texts: Iterable[str]) -> str:
    return ' '.join(texts).lower()


def classify_topics(texts: Iterable[str], limit: int = MAX_TOPICS) -> List[str]:
    """Return up to `limit` vocabulary topics ordered by occurrence count.

    Ties keep vocabulary order.
    """
    text = _joined(texts)
    if not text:
        return []

    counts = [(topic, text.count(topic)) for topic in TOPIC_VOCABULARY]
    matched = [(topic, count) for topic, count in counts if count > 0]
    matched.sort(key=lambda item: item[1], reverse=True)
    return [topic for topic, _ in matched[:limit]]


def classify_tone(texts: Iterable[str]) -> Tone:
    """Majority vote between the positive and negative keyword lists."""
    text = _joined(texts)
    positive = sum(1 for word in POSITIVE_WORDS if word in text)
    negative = sum(1 for word in NEGATIVE_WORDS if word in text)

    if positive > negative:
        return Tone.POSITIVE
    if negative > positive:
        return Tone.NEGATIVE
    return Tone.NEUTRAL


def detect_conversation_type(texts: Iterable[str]) -> str:
    text = _joined(texts)
    for conversation_type, keywords in CONVERSATION_TYPES:
        if any(keyword in text for keyword in keywords):
            return conversation_type
    return 'general'


def infer_user_preferences(texts: List[str], limit: int = MAX_TOPICS) -> Dict[str, Any]:
    """Summarize a user's own messages.

    Args:
        texts: Contents of user-role messages
        limit: Maximum number of preferred topics

    Returns:
        Dictionary with preferred_topics, communication_style and
        emotional_pattern; empty when there are no messages
    """
    if not texts:
        return {}

    average_length = sum(len(text) for text in texts) / len(texts)
    return {
        'preferred_topics': classify_topics(texts, limit),
        'communication_style': 'detailed' if average_length > DETAILED_MESSAGE_LENGTH else 'concise',
        'emotional_pattern': classify_tone(texts).value,
    }


def semantic_chunk(content: str) -> str:
    """Return the longest sentence of a turn, or the whole content when no sentence qualifies."""
    sentences = [sentence for sentence in SENTENCE_BOUNDARY.split(content)
                 if len(sentence.strip()) > MIN_CHUNK_SENTENCE_LENGTH]
    if not sentences:
        return content
    return max(sentences, key=len).strip()


def conversation_flow(turns: Sequence[Turn], index: int) -> str:
    """
    Position of a turn within its conversation.

    Returns:
        'start' or 'end' at the boundaries, otherwise 'answer' for an assistant
        reply to the user, 'question' for a user reply to the assistant and
        'continuation' when the same role speaks twice
    """
    if index == 0:
        return 'start'
    if index == len(turns) - 1:
        return 'end'

    current, previous = turns[index].role, turns[index - 1].role
    if current == Role.ASSISTANT and previous == Role.USER:
        return 'answer'
    if current == Role.USER and previous == Role.ASSISTANT:
        return 'question'
    return 'continuation'
