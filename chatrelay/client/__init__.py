"""Client library: stream consumption and conversation state."""

from chatrelay.client.cancellation import CancellationToken
from chatrelay.client.persistence import ConversationStoreClient, DebouncedSaver
from chatrelay.client.prompt import PromptBuilder
from chatrelay.client.reconciler import ConversationReconciler
from chatrelay.client.stream import FrameStream, StreamConsumer
from chatrelay.client.throttle import FlushThrottle
from chatrelay.client.titles import TitleGenerator

__all__ = [
    "CancellationToken",
    "ConversationReconciler",
    "ConversationStoreClient",
    "DebouncedSaver",
    "FlushThrottle",
    "FrameStream",
    "PromptBuilder",
    "StreamConsumer",
    "TitleGenerator",
]
