"""
Topic and client identifier helpers.

Every probe attempt works on a fresh random topic and fresh client ids so
probes never interfere with each other on the broker.
"""
import string
import uuid

FILLER = "a"
SHARE_PREFIX = "$share/"

# Characters the identifier scan tries, each one on its own if the broker
# does not take all of them at once.
CLIENT_ID_CHARACTERS = " " + string.punctuation


def generate_topic(max_length: int = -1) -> str:
    """A random topic, cut down to `max_length` when a maximum is known."""
    topic = uuid.uuid4().hex
    if max_length > 0:
        return topic[:max_length]
    return topic


def generate_client_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def shared_filter(topic: str) -> str:
    """Wraps a topic into a shared subscription filter with a fresh group."""
    return f"{SHARE_PREFIX}{uuid.uuid4().hex}/{topic}"


def strip_share_group(topic_filter: str) -> str:
    """
    Returns the filter a delivered topic is matched against.
    `$share/<group>/a/b` matches the same topics as `a/b`.
    """
    if topic_filter.startswith(SHARE_PREFIX):
        parts = topic_filter.split("/", 2)
        if len(parts) == 3:
            return parts[2]
    return topic_filter


def filler(length: int) -> str:
    return FILLER * length
