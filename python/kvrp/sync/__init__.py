"""Live feed synchronization.

Snapshot loading, change listening, reconciliation, mutation dispatch and
view models. Feed assembly lives in kvrp.sync.feeds.
"""

from kvrp.sync.dispatcher import ImageUpload, Limits, MutationDispatcher, VoiceClip, VoiceRecorder
from kvrp.sync.listener import ChangeListener
from kvrp.sync.loader import FeedSource, SnapshotLoader
from kvrp.sync.presenter import MessageView, PostView, present_messages, present_posts
from kvrp.sync.reconciler import Reconciler

__all__ = [
    "ChangeListener",
    "FeedSource",
    "ImageUpload",
    "Limits",
    "MessageView",
    "MutationDispatcher",
    "PostView",
    "Reconciler",
    "SnapshotLoader",
    "VoiceClip",
    "VoiceRecorder",
    "present_messages",
    "present_posts",
]
