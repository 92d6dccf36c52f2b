from enum import Enum

class Scope(str, Enum):
    """Capability scopes carried by server tokens.

    Game servers only ever receive ``server`` tokens; ``event.ingest`` is the
    effective permission checked by the ingest route.
    """

    event_ingest = "event.ingest"
    server = "server"  # game server token (implies event.ingest)
