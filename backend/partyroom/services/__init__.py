"""Room coordination services.

Routes and socket handlers import from here; these modules hold the
room, turn and game rules and talk to the store, never to the transport.
"""
