"""
Pluggable repositories for everything the chat core and the guestbook read or write.

Each data model module defines a pydantic record plus an ABC repository. Concrete
implementations live next to them:

    'in_memory'  - dict-backed repositories for tests and local development.
    'supabase'   - PostgREST / edge-function clients over 'httpx' for the hosted backend.
    'live_feed'  - push notifications for newly inserted turns.
    'delivery'   - the fire-and-acknowledge call that asks the backend for an answer.
"""
