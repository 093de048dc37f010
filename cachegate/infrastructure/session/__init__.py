from cachegate.infrastructure.session.session_store import SessionStore, generate_session_id

__all__ = ["SessionStore", "generate_session_id"]
