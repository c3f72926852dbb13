from ckfinance.session.session_manager import ChannelFactory, SessionManager, SessionState

__all__ = ["ChannelFactory", "SessionManager", "SessionState"]
