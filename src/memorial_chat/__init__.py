"""
memorial-chat: the document-grounded chat and guestbook backend of the memorial site.

The package is split the same way the site is used:

    'memorial_chat.chat'                   - citation-aware message pipeline (transform, cache, send/await, navigation).
    'memorial_chat.conversation_database'  - pluggable repositories for turns, sources, notebooks and tributes.
    'memorial_chat.tributes'               - guestbook validation and card conversion.
    'memorial_chat.controller'             - facade used by the FastAPI app in 'memorial_chat.api'.
"""

__version__ = "0.1.0"
