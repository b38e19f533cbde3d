"""HTTP surface of the memorial site: chat, source viewer and guestbook routes."""
